# zone_engine/node/exceptions.py


class ZoneEngineError(Exception):
    """Base exception for all zone engine errors."""
    pass


# ----------------------------------------------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------------------------------------------

class ValidationError(ZoneEngineError):
    """Raised when a request refers to unknown entities or carries malformed values."""
    pass

class ZoneNotFoundError(ValidationError):
    """
    Exception raised when a zone id is not part of the configured zones.
    Attributes:
        zone_id (int): The zone id that was requested.
    """
    def __init__(self, zone_id: int):
        super().__init__(f"Zone {zone_id} not found")
        self.zone_id = zone_id

class ScheduleValidationError(ValidationError):
    """Exception raised when schedule fields (time, days, duration, zone) are invalid."""
    pass


# ----------------------------------------------------------------------------------------------------------
# Policy
# ----------------------------------------------------------------------------------------------------------

class PolicyError(ZoneEngineError):
    """Raised when a valid request is refused by an operating policy."""
    pass

class RainDelayActiveError(PolicyError):
    """Exception raised when a zone start is attempted while the rain delay is active."""
    def __init__(self, message: str = "Rain delay active"):
        super().__init__(message)


# ----------------------------------------------------------------------------------------------------------
# Hardware
# ----------------------------------------------------------------------------------------------------------

class RelayError(ZoneEngineError):
    """Custom exception for relay driver errors."""
    pass

class RelayInitializationError(RelayError):
    """Exception raised when the relay backend or one of its outputs fails to initialize."""
    pass

class RelayWriteError(RelayError):
    """
    Exception raised when switching a relay fails.
    Attributes:
        zone_id (int): The zone whose relay was switched.
        action (str): "on" or "off".
    """
    def __init__(self, message: str, zone_id: int, action: str):
        super().__init__(message)
        self.zone_id = zone_id
        self.action = action


# ----------------------------------------------------------------------------------------------------------
# Persistence & configuration
# ----------------------------------------------------------------------------------------------------------

class PersistenceError(ZoneEngineError):
    """Exception raised when a state or log document cannot be written."""
    pass

class ConfigError(ZoneEngineError):
    """Exception raised when the engine configuration is invalid."""
    pass
