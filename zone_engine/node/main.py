import argparse
import atexit
import signal
import threading

from zone_engine.__version__ import __version__ as version
from zone_engine.node.config.config_loader import load_engine_config
from zone_engine.node.core.controller.controller_core import ControllerCore
from zone_engine.node.exceptions import ConfigError
from zone_engine.node.utils.logger import get_logger, configure_logging


logger = get_logger("zone_engine.main")


def main(argv: list[str] | None = None) -> int:
    """Run the zone engine headless: schedules and zone expiry until SIGINT/SIGTERM."""
    parser = argparse.ArgumentParser(description="Zone/Schedule control engine for irrigation relays.")
    parser.add_argument("--config", help="Path to the engine configuration JSON file.")
    args = parser.parse_args(argv)

    try:
        config = load_engine_config(args.config)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    configure_logging(config.logging.log_dir, config.logging.log_level.value, config.logging.console_level.value)
    logger.info("Initializing zone engine...")
    logger.info(f"Version: {version}")

    controller = ControllerCore(config)
    atexit.register(controller.shutdown)

    stop_event = threading.Event()

    def shutdown_handler(signum, frame):
        logger.info(f"Received signal {signum}, performing clean shutdown...")
        stop_event.set()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    controller.start()
    while not stop_event.wait(timeout=1.0):
        pass

    controller.shutdown()
    logger.info("Zone engine stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
