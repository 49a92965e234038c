"""AIS-140 tracker emulator - sends LGN/PVT packets to tracking servers."""

__version__ = "1.0.0"

from .config import Settings
from .errors import (
    EmulatorError, ConfigValidationError, ConnectError,
    SendError, TerminalTransportError
)
from .models import DeviceConfig, ServerTarget, TransmissionRecord
from .packet_encoder import build_login_packet, build_position_report_packet
from .session_manager import SessionManager
from .transmission_log import TransmissionLog
from .transport import TCPTransport, HTTPRelayTransport, create_transport

__all__ = [
    "Settings",
    "EmulatorError",
    "ConfigValidationError",
    "ConnectError",
    "SendError",
    "TerminalTransportError",
    "DeviceConfig",
    "ServerTarget",
    "TransmissionRecord",
    "build_login_packet",
    "build_position_report_packet",
    "SessionManager",
    "TransmissionLog",
    "TCPTransport",
    "HTTPRelayTransport",
    "create_transport",
]
