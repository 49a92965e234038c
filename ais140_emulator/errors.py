"""Error taxonomy for the tracker emulator."""


class EmulatorError(Exception):
    """Base class for all emulator errors."""


class ConfigValidationError(EmulatorError):
    """A required configuration field is missing or malformed.

    Raised before any session starts; nothing is connected or recorded.
    """

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class ConnectError(EmulatorError):
    """The transport could not establish a session with a target."""


class SendError(EmulatorError):
    """A single packet failed to transmit or the remote returned non-success."""


class TerminalTransportError(EmulatorError):
    """The transport reported close, error or idle timeout on an open handle."""
