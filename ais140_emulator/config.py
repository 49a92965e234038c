"""Configuration management using environment variables."""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, ValidationError, field_validator

from .errors import ConfigValidationError
from .models import DeviceConfig, PositionSource, ServerTarget


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # Transmission Configuration
    transport: str = Field(
        default="tcp",
        description="Transport used to reach servers (tcp or http)"
    )
    servers: str = Field(
        default="",
        description="Comma separated host:port list of target servers"
    )
    relay_url: str = Field(
        default="http://localhost:8000/relay",
        description="Relay endpoint that forwards packets when transport is http"
    )
    send_interval: float = Field(
        default=5.0,
        gt=0,
        le=3600,
        description="Seconds between position reports"
    )
    connect_timeout: float = Field(
        default=15.0,
        ge=0.1,
        le=300.0,
        description="Timeout for establishing a TCP connection"
    )
    idle_timeout: float = Field(
        default=0.0,
        ge=0.0,
        le=3600.0,
        description="Close a TCP session after this many idle seconds (0 disables)"
    )
    http_timeout: float = Field(
        default=10.0,
        ge=0.1,
        le=300.0,
        description="Timeout for one relay round trip"
    )
    max_session_lifetime: float = Field(
        default=0.0,
        ge=0.0,
        description="Close sessions after this many seconds (0 disables)"
    )
    status_poll_interval: float = Field(
        default=2.0,
        gt=0,
        le=300,
        description="Seconds between connection status snapshots"
    )

    # Device Configuration
    device_imei: str = Field(
        default="",
        description="15-digit IMEI of the emulated device"
    )
    vendor_id: str = Field(
        default="",
        description="Vendor identifier (VNDR when blank)"
    )
    vehicle_number: str = Field(
        default="",
        description="Vehicle registration number"
    )
    network_provider: str = Field(
        default="",
        description="Network provider (Airtel, Vodafone or BSNL)"
    )
    firmware_version: str = Field(
        default="",
        description="Firmware version (FIRMWAREVER1.0 when blank)"
    )
    use_gps_coordinates: bool = Field(
        default=True,
        description="Take coordinates from device GPS instead of latitude/longitude"
    )
    latitude: str = Field(
        default="",
        description="Manual latitude in decimal degrees"
    )
    longitude: str = Field(
        default="",
        description="Manual longitude in decimal degrees"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_format: str = Field(
        default="text",
        description="Log format (json or text)"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional log file path"
    )

    # Metrics Configuration
    metrics_enabled: bool = Field(
        default=False,
        description="Enable Prometheus metrics"
    )
    metrics_port: int = Field(
        default=8089,
        ge=1,
        le=65535,
        description="Port for Prometheus metrics endpoint"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        v_lower = v.lower()
        if v_lower not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}. Must be json or text")
        return v_lower

    @field_validator("transport")
    @classmethod
    def validate_transport(cls, v):
        """Validate transport name."""
        v_lower = v.lower()
        if v_lower not in ("tcp", "http"):
            raise ValueError(f"Invalid transport: {v}. Must be tcp or http")
        return v_lower

    @field_validator("relay_url")
    @classmethod
    def validate_relay_url(cls, v):
        """Validate relay URL format."""
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("Relay URL must start with http:// or https://")
        return v

    @property
    def is_http_transport(self) -> bool:
        return self.transport == "http"

    def device_config(self) -> DeviceConfig:
        """
        Build the device configuration described by these settings.

        Raises:
            ConfigValidationError: If a field cannot be represented, such as
                an unknown network provider
        """
        try:
            return DeviceConfig(
                device_imei=self.device_imei,
                vendor_id=self.vendor_id or None,
                firmware_version=self.firmware_version or None,
                vehicle_number=self.vehicle_number,
                network_provider=self.network_provider or None,
                position_source=(PositionSource.DEVICE_GPS if self.use_gps_coordinates
                                 else PositionSource.MANUAL),
                latitude=self.latitude or None,
                longitude=self.longitude or None,
            )
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else "device"
            raise ConfigValidationError(field, f"Invalid {field}: {error['msg']}") from None

    def server_targets(self) -> List[ServerTarget]:
        """
        Parse the configured server list.

        Returns:
            Targets in configured order with ids server_1, server_2, ...

        Raises:
            ConfigValidationError: If an entry is not a valid host:port
        """
        return parse_servers(self.servers)

    def get_summary(self) -> dict:
        """Get configuration summary for logging."""
        return {
            "transport": self.transport,
            "servers": self.servers or "none",
            "relay_url": self.relay_url if self.is_http_transport else None,
            "send_interval": self.send_interval,
            "max_session_lifetime": self.max_session_lifetime or "unbounded",
            "device_imei": self.device_imei,
            "position_source": "gps" if self.use_gps_coordinates else "manual",
            "log_level": self.log_level,
            "metrics": f"port {self.metrics_port}" if self.metrics_enabled else "disabled"
        }


def parse_servers(servers: str) -> List[ServerTarget]:
    """
    Parse a ``host:port,host:port`` list into server targets.

    Args:
        servers: Comma separated server list

    Returns:
        Targets with ids server_1, server_2, ... in list order

    Raises:
        ConfigValidationError: If an entry is blank or malformed
    """
    targets = []
    entries = [entry.strip() for entry in servers.split(",") if entry.strip()]

    for index, entry in enumerate(entries, start=1):
        host, sep, port = entry.rpartition(":")
        if not sep or not host.strip() or not port.strip():
            raise ConfigValidationError(
                "servers", "Please fill all IP and Port fields"
            )

        try:
            targets.append(ServerTarget(id=f"server_{index}", host=host, port=port))
        except ValidationError:
            raise ConfigValidationError(
                "servers", f"Invalid server address: {entry}"
            ) from None

    return targets
