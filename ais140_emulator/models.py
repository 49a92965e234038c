"""Domain models for device configuration, targets and transmission records."""

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigValidationError

IMEI_PATTERN = re.compile(r"[0-9]{15}")


class NetworkProvider(str, Enum):
    """Cellular network the emulated device reports."""

    AIRTEL = "Airtel"
    VODAFONE = "Vodafone"
    BSNL = "BSNL"


class PositionSource(str, Enum):
    """Where position reports take their coordinates from."""

    DEVICE_GPS = "device_gps"
    MANUAL = "manual"


class PacketKind(str, Enum):
    """Kinds of packets a session sends."""

    LOGIN = "LGN"
    POSITION_REPORT = "PVT"
    CUSTOM = "CUSTOM"


class RecordStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class SessionState(str, Enum):
    """Lifecycle of a per-target transmission session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class DeviceConfig(BaseModel):
    """Snapshot of the emulated device's identity and position source.

    Construction accepts incomplete data so packets can always be built;
    call :meth:`validate_for_transmission` before starting a session.
    """

    model_config = ConfigDict(frozen=True)

    device_imei: str = Field(default="", description="15-digit device IMEI")
    vendor_id: Optional[str] = Field(default=None, description="Vendor identifier")
    firmware_version: Optional[str] = Field(default=None, description="Firmware version string")
    vehicle_number: str = Field(default="", description="Vehicle registration number")
    network_provider: Optional[NetworkProvider] = Field(
        default=None,
        description="Network provider reported in position packets"
    )
    position_source: PositionSource = Field(
        default=PositionSource.DEVICE_GPS,
        description="Use live device GPS or fixed manual coordinates"
    )
    latitude: Optional[str] = Field(default=None, description="Manual latitude in decimal degrees")
    longitude: Optional[str] = Field(default=None, description="Manual longitude in decimal degrees")

    @field_validator(
        "device_imei", "vendor_id", "firmware_version",
        "vehicle_number", "latitude", "longitude",
        mode="before"
    )
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("network_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v):
        """Accept provider names in any case; blank means unset."""
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            for provider in NetworkProvider:
                if provider.value.lower() == v.lower():
                    return provider
        return v

    @property
    def is_manual_position(self) -> bool:
        return self.position_source == PositionSource.MANUAL

    def validate_for_transmission(self) -> None:
        """
        Check the fields a live session depends on.

        Raises:
            ConfigValidationError: If the IMEI is not exactly 15 digits or
                manual coordinates are missing
        """
        if not self.device_imei:
            raise ConfigValidationError("device_imei", "Please enter device IMEI")

        if not IMEI_PATTERN.fullmatch(self.device_imei):
            raise ConfigValidationError("device_imei", "IMEI must be 15 digits")

        if self.is_manual_position and (not self.latitude or not self.longitude):
            raise ConfigValidationError(
                "latitude" if not self.latitude else "longitude",
                "Please enter latitude and longitude coordinates"
            )


class ServerTarget(BaseModel):
    """One transmission destination."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable target identifier")
    host: str = Field(..., min_length=1, description="Host name or IP address")
    port: int = Field(..., ge=1, le=65535, description="Destination port")

    @field_validator("id", "host", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class Coordinates(BaseModel):
    """A live position fix supplied by the device GPS."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class TransmissionRecord(BaseModel):
    """One observed exchange with a server."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Monotonic sequence number within the log")
    timestamp: datetime
    target_id: str
    host: str
    port: int
    kind: PacketKind
    packet: str
    response: str = Field(default="", description="Response text or error message")
    status: RecordStatus

    @property
    def is_error(self) -> bool:
        return self.status == RecordStatus.ERROR


class SessionStatus(BaseModel):
    """Point-in-time view of one session."""

    target_id: str
    connected: bool
    state: SessionState


def validate_targets(targets: Sequence[ServerTarget]) -> List[ServerTarget]:
    """
    Check that a target list is non-empty and its ids are distinct.

    Args:
        targets: Configured server targets in order

    Returns:
        The targets as a list, order preserved

    Raises:
        ConfigValidationError: If the list is empty or ids repeat
    """
    targets = list(targets)
    if not targets:
        raise ConfigValidationError("servers", "Please configure at least one server")

    seen = set()
    for target in targets:
        if target.id in seen:
            raise ConfigValidationError("servers", f"Duplicate server id: {target.id}")
        seen.add(target.id)

    return targets
