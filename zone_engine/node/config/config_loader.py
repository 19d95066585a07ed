import json
import os
from collections.abc import Mapping

from zone_engine.node.config.engine_config import EngineConfig
from zone_engine.node.core.enums import RelayMode
from zone_engine.node.exceptions import ConfigError
from zone_engine.node.utils.logger import get_logger


# Determine the base directory of the project
BASE_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "../../..")
)
CONFIG_ENGINE_PATH = os.path.join(BASE_DIR, "runtime/node/config/engine_config.json")

logger = get_logger("config_loader")


def parse_pin_map(raw: str) -> dict[int, int]:
    """
    Parses a zone-to-pin mapping in the form "1:17,2:18,3:27".

    :raises ConfigError: if an item is not a pair of integers.
    """
    pin_map = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            zone_id, pin = item.split(":")
            pin_map[int(zone_id)] = int(pin)
        except ValueError:
            raise ConfigError(f"Invalid GPIO_PIN_MAP item '{item}'. Expected 'zone:pin'.")
    if not pin_map:
        raise ConfigError("GPIO_PIN_MAP is empty.")
    return pin_map


def load_engine_config(filepath: str | None = None, environ: Mapping[str, str] | None = None) -> EngineConfig:
    """
    Loads the engine configuration from a JSON file and applies environment overrides.

    Without an explicit filepath, ZONE_ENGINE_CONFIG or the default runtime path is used;
    a missing default file means built-in defaults.

    :raises ConfigError: if the file is unreadable or the resulting configuration is invalid.
    """
    env = os.environ if environ is None else environ
    explicit = filepath is not None or "ZONE_ENGINE_CONFIG" in env
    path = filepath or env.get("ZONE_ENGINE_CONFIG", CONFIG_ENGINE_PATH)

    data: dict = {}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read configuration file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {path} must contain a JSON object.")
    elif explicit:
        raise ConfigError(f"Configuration file {path} not found.")
    else:
        logger.info(f"No configuration file at {path}, using defaults.")

    try:
        config = EngineConfig.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    _apply_env_overrides(config, env)
    _resolve_paths(config)
    _validate(config)
    return config


def _apply_env_overrides(config: EngineConfig, env: Mapping[str, str]) -> None:
    if "RELAY_MODE" in env:
        try:
            config.relay.mode = RelayMode(env["RELAY_MODE"].strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown RELAY_MODE '{env['RELAY_MODE']}'. Use one of: mock, gpio, http.")
    if "GPIO_PIN_MAP" in env:
        config.relay.gpio_pin_map = parse_pin_map(env["GPIO_PIN_MAP"])
    if "RELAY_BASE_URL" in env:
        config.relay.http_base_url = env["RELAY_BASE_URL"]
    if "ZONE_ENGINE_STATE_FILE" in env:
        config.persistence.state_file = env["ZONE_ENGINE_STATE_FILE"]
    if "ZONE_ENGINE_RUN_LOG_FILE" in env:
        config.persistence.run_log_file = env["ZONE_ENGINE_RUN_LOG_FILE"]
    if "ZONE_ENGINE_LOG_DIR" in env:
        config.logging.log_dir = env["ZONE_ENGINE_LOG_DIR"]


def _resolve_paths(config: EngineConfig) -> None:
    # Relative paths are relative to the project root, not the working directory
    if not os.path.isabs(config.persistence.state_file):
        config.persistence.state_file = os.path.join(BASE_DIR, config.persistence.state_file)
    if not os.path.isabs(config.persistence.run_log_file):
        config.persistence.run_log_file = os.path.join(BASE_DIR, config.persistence.run_log_file)
    if config.logging.log_dir and not os.path.isabs(config.logging.log_dir):
        config.logging.log_dir = os.path.join(BASE_DIR, config.logging.log_dir)


def _validate(config: EngineConfig) -> None:
    errors = []

    zone_ids = [zone.id for zone in config.zones]
    if len(zone_ids) != len(set(zone_ids)):
        errors.append("zone ids must be unique")
    if config.persistence.max_log_entries <= 0:
        errors.append("max_log_entries must be positive")
    if config.scheduler.check_interval_sec <= 0:
        errors.append("check_interval_sec must be positive")
    if config.scheduler.expiry_poll_interval_sec <= 0:
        errors.append("expiry_poll_interval_sec must be positive")
    if config.scheduler.default_duration_sec <= 0:
        errors.append("default_duration_sec must be positive")
    if config.relay.mode == RelayMode.HTTP and not config.relay.http_base_url:
        errors.append("http_base_url is required in http relay mode")
    if config.relay.mode == RelayMode.GPIO:
        unmapped = sorted(set(zone_ids) - set(config.relay.gpio_pin_map))
        if unmapped:
            # Not fatal, those zones are simply uncontrollable
            logger.warning(f"Zones {unmapped} have no GPIO pin mapping.")

    if errors:
        raise ConfigError("Invalid configuration: " + "; ".join(errors))
