import pytest
import requests
from unittest.mock import MagicMock

import zone_engine.node.core.relay_driver as relay_driver
from zone_engine.node.config.engine_config import RelaySettings
from zone_engine.node.core.enums import RelayMode
from zone_engine.node.core.relay_driver import (
    GPIORelayDriver,
    HTTPRelayDriver,
    SimulatedRelayDriver,
    create_relay_driver,
)
from zone_engine.node.exceptions import RelayInitializationError, RelayWriteError


# ---------------------- Fixtures ----------------------

@pytest.fixture
def gpio():
    fake = MagicMock()
    fake.HIGH = 1
    fake.LOW = 0
    return fake


@pytest.fixture
def session():
    fake = MagicMock()
    fake.post.return_value = MagicMock(ok=True, status_code=200, reason="OK")
    return fake


# ---------------------- Simulated ----------------------

def test_simulated_driver_tracks_state():
    driver = SimulatedRelayDriver()

    driver.activate(1)
    assert driver.is_active(1)
    assert not driver.is_active(2)

    driver.deactivate(1)
    assert not driver.is_active(1)


# ---------------------- GPIO ----------------------

def test_gpio_driver_sets_up_pins_off(gpio):
    GPIORelayDriver({1: 17, 2: 18}, gpio=gpio)

    gpio.setmode.assert_called_once_with(gpio.BCM)
    gpio.setup.assert_any_call(17, gpio.OUT, initial=0)
    gpio.setup.assert_any_call(18, gpio.OUT, initial=0)


def test_gpio_driver_writes_levels(gpio):
    driver = GPIORelayDriver({1: 17}, gpio=gpio)

    driver.activate(1)
    gpio.output.assert_called_with(17, 1)
    assert driver.is_active(1)

    driver.deactivate(1)
    gpio.output.assert_called_with(17, 0)
    assert not driver.is_active(1)


def test_gpio_driver_active_low(gpio):
    driver = GPIORelayDriver({1: 17}, active_high=False, gpio=gpio)

    gpio.setup.assert_called_once_with(17, gpio.OUT, initial=1)
    driver.activate(1)
    gpio.output.assert_called_with(17, 0)


def test_failed_pin_leaves_zone_uncontrollable(gpio):
    def setup(pin, mode, initial):
        if pin == 18:
            raise RuntimeError("pin busy")

    gpio.setup.side_effect = setup
    driver = GPIORelayDriver({1: 17, 2: 18}, gpio=gpio)

    assert driver.controllable_zones == [1]
    driver.activate(1)
    with pytest.raises(RelayWriteError) as exc_info:
        driver.activate(2)
    assert exc_info.value.zone_id == 2
    assert exc_info.value.action == "on"


def test_gpio_output_failure_raises_write_error(gpio):
    driver = GPIORelayDriver({1: 17}, gpio=gpio)
    gpio.output.side_effect = RuntimeError("i/o error")

    with pytest.raises(RelayWriteError):
        driver.deactivate(1)


def test_gpio_mode_failure_raises_initialization_error(gpio):
    gpio.setmode.side_effect = RuntimeError("no access to /dev/gpiomem")

    with pytest.raises(RelayInitializationError):
        GPIORelayDriver({1: 17}, gpio=gpio)


def test_gpio_cleanup_switches_off_and_releases_pins(gpio):
    driver = GPIORelayDriver({1: 17, 2: 18}, gpio=gpio)
    driver.activate(2)
    gpio.output.reset_mock()

    driver.cleanup()

    gpio.output.assert_any_call(17, 0)
    gpio.output.assert_any_call(18, 0)
    gpio.cleanup.assert_called_once_with([17, 18])


# ---------------------- HTTP ----------------------

def test_http_driver_posts_relay_command(session):
    driver = HTTPRelayDriver("http://relay.local:8080/", timeout=2.5, session=session)

    driver.activate(3)

    session.post.assert_called_once_with(
        "http://relay.local:8080/relay/3/on",
        json={"zoneId": 3, "action": "on"},
        timeout=2.5,
    )
    assert driver.is_active(3)


def test_http_driver_off_command(session):
    driver = HTTPRelayDriver("http://relay.local:8080", session=session)

    driver.deactivate(2)

    session.post.assert_called_once_with(
        "http://relay.local:8080/relay/2/off",
        json={"zoneId": 2, "action": "off"},
        timeout=5.0,
    )


def test_http_error_status_raises_write_error(session):
    session.post.return_value = MagicMock(ok=False, status_code=500, reason="Internal Server Error")
    driver = HTTPRelayDriver("http://relay.local:8080", session=session)

    with pytest.raises(RelayWriteError):
        driver.activate(1)
    assert not driver.is_active(1)


def test_http_unreachable_raises_write_error(session):
    session.post.side_effect = requests.ConnectionError("connection refused")
    driver = HTTPRelayDriver("http://relay.local:8080", session=session)

    with pytest.raises(RelayWriteError) as exc_info:
        driver.deactivate(4)
    assert exc_info.value.action == "off"


def test_http_cleanup_closes_session(session):
    driver = HTTPRelayDriver("http://relay.local:8080", session=session)

    driver.cleanup()

    session.close.assert_called_once()


# ---------------------- Factory ----------------------

def test_factory_builds_simulated_driver():
    driver = create_relay_driver(RelaySettings(mode=RelayMode.SIMULATED))

    assert isinstance(driver, SimulatedRelayDriver)


def test_factory_builds_gpio_driver(gpio):
    driver = create_relay_driver(RelaySettings(mode=RelayMode.GPIO, gpio_pin_map={1: 5}), gpio=gpio)

    assert isinstance(driver, GPIORelayDriver)
    assert driver.mode == RelayMode.GPIO


def test_factory_falls_back_when_gpio_init_fails(gpio):
    gpio.setmode.side_effect = RuntimeError("not a Raspberry Pi")

    driver = create_relay_driver(RelaySettings(mode=RelayMode.GPIO), gpio=gpio)

    assert isinstance(driver, SimulatedRelayDriver)


def test_factory_falls_back_without_gpio_library(monkeypatch):
    monkeypatch.setattr(relay_driver, "GPIO", None)

    driver = create_relay_driver(RelaySettings(mode=RelayMode.GPIO))

    assert isinstance(driver, SimulatedRelayDriver)


def test_factory_builds_http_driver():
    driver = create_relay_driver(RelaySettings(mode=RelayMode.HTTP, http_base_url="http://10.0.0.7"))

    assert isinstance(driver, HTTPRelayDriver)
    assert driver.base_url == "http://10.0.0.7"
    driver.cleanup()
