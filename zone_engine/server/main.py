"""
HTTP entry point of the zone engine.
Sets up the FastAPI application around one ControllerCore instance.

Runs with:
uvicorn zone_engine.server.main:app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import zone_engine.node.utils.time_utils as time_utils
from zone_engine.__version__ import __version__
from zone_engine.node.config.config_loader import load_engine_config
from zone_engine.node.core.controller.controller_core import ControllerCore
from zone_engine.node.utils.logger import get_logger, configure_logging
from zone_engine.server.api.routes import router as api_router


logger = get_logger("zone_engine.server")


def _build_controller() -> ControllerCore:
    config = load_engine_config()
    configure_logging(config.logging.log_dir, config.logging.log_level.value, config.logging.console_level.value)
    return ControllerCore(config)


def create_app(controller: ControllerCore | None = None, start_background_tasks: bool = True) -> FastAPI:
    """
    Build the API application.

    :param controller: engine to expose. Built from the configuration file at startup when omitted.
    :param start_background_tasks: run the schedule and expiry tasks while the app is up.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = controller or _build_controller()
        app.state.controller = engine
        app.state.started_at = time_utils.now()
        if start_background_tasks:
            engine.start()
        logger.info(f"Zone engine API {__version__} started.")
        try:
            yield
        finally:
            engine.shutdown()
            logger.info("Zone engine API stopped.")

    app = FastAPI(title="Zone Engine API",
                  version=__version__,
                  description=(
                      "REST API of the irrigation zone engine. "
                      "Provides endpoints to control zones, the rain delay and schedules."
                  ),
                  lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        location = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
        if location:
            message = f"{location}: {message}"
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    app.include_router(api_router, prefix="/api")  # Prefix all routes with /api
    return app


app = create_app()


# ------------------- Dev Entry Point ------------------- #
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "zone_engine.server.main:app",
        host="0.0.0.0",
        port=8000,
    )
