# zone_engine/node/core/relay_driver.py

try:
    import RPi.GPIO as GPIO
    GPIO_SUPPORTED = True
# ImportError off the Pi, RuntimeError when the module refuses to load without GPIO access
except (ImportError, RuntimeError):
    GPIO = None
    GPIO_SUPPORTED = False

import threading
from abc import ABC, abstractmethod

import requests

from zone_engine.node.config.engine_config import RelaySettings
from zone_engine.node.core.enums import RelayMode
from zone_engine.node.exceptions import RelayError, RelayInitializationError, RelayWriteError
from zone_engine.node.utils.logger import get_logger


class RelayDriver(ABC):
    """
    Hardware abstraction for zone relays.

    Callers must serialize calls per zone; ZoneManager guarantees this with its lock.
    """

    mode: RelayMode

    @abstractmethod
    def activate(self, zone_id: int) -> None:
        """
        Energize the relay of a zone.

        :raises RelayError: if the relay could not be switched on.
        """

    @abstractmethod
    def deactivate(self, zone_id: int) -> None:
        """
        De-energize the relay of a zone.

        :raises RelayError: if the relay could not be switched off.
        """

    @abstractmethod
    def is_active(self, zone_id: int) -> bool:
        """Best-effort knowledge of the relay state."""

    def cleanup(self) -> None:
        """Release hardware resources. Default: nothing to release."""
        pass


# ==================================================================================================================
# Simulated
# ==================================================================================================================

class SimulatedRelayDriver(RelayDriver):
    """In-memory relays used for development and automated tests. Always succeeds."""

    mode = RelayMode.SIMULATED

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)
        self._relays: dict[int, bool] = {}
        self._lock = threading.Lock()
        self.logger.info("Using simulated relays for development/testing.")

    def activate(self, zone_id: int) -> None:
        with self._lock:
            self._relays[zone_id] = True
        self.logger.info(f"Zone {zone_id} simulated ON")

    def deactivate(self, zone_id: int) -> None:
        with self._lock:
            self._relays[zone_id] = False
        self.logger.info(f"Zone {zone_id} simulated OFF")

    def is_active(self, zone_id: int) -> bool:
        with self._lock:
            return self._relays.get(zone_id, False)


# ==================================================================================================================
# Direct I/O (RPi.GPIO)
# ==================================================================================================================

class GPIORelayDriver(RelayDriver):
    """
    Drives one GPIO output per zone.

    A pin that fails to initialize is logged and its zone stays uncontrollable,
    the remaining zones keep working. Failure of the GPIO subsystem itself
    raises RelayInitializationError so the factory can fall back to simulation.
    """

    mode = RelayMode.GPIO

    def __init__(self, pin_map: dict[int, int], active_high: bool = True, gpio=None):
        self.logger = get_logger(self.__class__.__name__)
        self.gpio = gpio if gpio is not None else GPIO
        if self.gpio is None:
            raise RelayInitializationError("RPi.GPIO is not available on this system.")

        self.pin_map = dict(pin_map)
        self.active_high = active_high
        self._pins: dict[int, int] = {}           # Zones whose pin was set up successfully
        self._states: dict[int, bool] = {}

        try:
            self.gpio.setwarnings(False)
            self.gpio.setmode(self.gpio.BCM)
        except Exception as e:
            raise RelayInitializationError(f"Failed to initialize GPIO mode: {e}") from e

        self.logger.info(f"GPIO pin mapping: {self.pin_map}")
        for zone_id, pin in self.pin_map.items():
            try:
                self.gpio.setup(pin, self.gpio.OUT, initial=self._level(False))
                self._pins[zone_id] = pin
                self._states[zone_id] = False
                self.logger.info(f"Initialized zone {zone_id} on GPIO pin {pin}")
            except Exception as e:
                self.logger.error(f"Failed to initialize GPIO pin {pin} for zone {zone_id}: {e}")

    def _level(self, on: bool):
        if on == self.active_high:
            return self.gpio.HIGH
        return self.gpio.LOW

    def _write(self, zone_id: int, on: bool) -> None:
        action = "on" if on else "off"
        pin = self._pins.get(zone_id)
        if pin is None:
            raise RelayWriteError(f"No GPIO pin configured for zone {zone_id}", zone_id=zone_id, action=action)
        try:
            self.gpio.output(pin, self._level(on))
        except Exception as e:
            raise RelayWriteError(f"Failed to set GPIO pin {pin} for zone {zone_id}: {e}",
                                  zone_id=zone_id, action=action) from e
        self._states[zone_id] = on
        self.logger.debug(f"Set GPIO pin {pin} to {'HIGH' if self._level(on) == self.gpio.HIGH else 'LOW'} for zone {zone_id}")

    def activate(self, zone_id: int) -> None:
        self._write(zone_id, True)

    def deactivate(self, zone_id: int) -> None:
        self._write(zone_id, False)

    def is_active(self, zone_id: int) -> bool:
        return self._states.get(zone_id, False)

    @property
    def controllable_zones(self) -> list[int]:
        return sorted(self._pins)

    def cleanup(self) -> None:
        self.logger.info("Cleaning up GPIO pins...")
        for zone_id, pin in self._pins.items():
            try:
                self.gpio.output(pin, self._level(False))
            except Exception as e:
                self.logger.error(f"Failed to switch off GPIO pin {pin} for zone {zone_id}: {e}")
        try:
            self.gpio.cleanup(list(self._pins.values()))
        except Exception as e:
            self.logger.error(f"Failed to clean up GPIO pins: {e}")


# ==================================================================================================================
# Remote HTTP controller
# ==================================================================================================================

class HTTPRelayDriver(RelayDriver):
    """Sends POST {base_url}/relay/{zone_id}/{on|off} to a remote relay controller."""

    mode = RelayMode.HTTP

    def __init__(self, base_url: str, timeout: float = 5.0, session: requests.Session | None = None):
        self.logger = get_logger(self.__class__.__name__)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self._states: dict[int, bool] = {}
        self.logger.info(f"Using base URL: {self.base_url}")

    def _send(self, zone_id: int, action: str) -> None:
        url = f"{self.base_url}/relay/{zone_id}/{action}"
        try:
            response = self.session.post(url, json={"zoneId": zone_id, "action": action}, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"Failed to send {action} request to {url}: {e}")
            raise RelayWriteError(f"Relay controller unreachable: {e}", zone_id=zone_id, action=action) from e

        if not response.ok:
            self.logger.error(f"Relay controller answered {action} request to {url} with HTTP {response.status_code}")
            raise RelayWriteError(f"HTTP {response.status_code}: {response.reason}", zone_id=zone_id, action=action)

        self._states[zone_id] = action == "on"
        self.logger.info(f"Sent {action.upper()} trigger to {url}")

    def activate(self, zone_id: int) -> None:
        self._send(zone_id, "on")

    def deactivate(self, zone_id: int) -> None:
        self._send(zone_id, "off")

    def is_active(self, zone_id: int) -> bool:
        # Last acknowledged command, the remote side is not queried
        return self._states.get(zone_id, False)

    def cleanup(self) -> None:
        self.session.close()


# ==================================================================================================================
# Factory
# ==================================================================================================================

def create_relay_driver(settings: RelaySettings, gpio=None) -> RelayDriver:
    """
    Select the relay driver once at startup.

    GPIO mode degrades to the simulated driver when the I/O subsystem cannot be initialized.
    """
    logger = get_logger("RelayDriverFactory")
    logger.info(f"Initializing relay driver in {settings.mode.value.upper()} mode")

    if settings.mode == RelayMode.GPIO:
        try:
            return GPIORelayDriver(settings.gpio_pin_map, active_high=settings.gpio_active_high, gpio=gpio)
        except RelayError as e:
            logger.error(f"Failed to initialize GPIO mode: {e}")
            logger.warning("Falling back to simulated relays.")
            return SimulatedRelayDriver()

    if settings.mode == RelayMode.HTTP:
        return HTTPRelayDriver(settings.http_base_url, timeout=settings.http_timeout_sec)

    return SimulatedRelayDriver()
