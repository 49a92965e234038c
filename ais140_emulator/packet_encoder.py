"""Builder and parser for AIS-140 style LGN/PVT packets."""

import re
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field
import structlog

from .models import Coordinates, DeviceConfig, PacketKind

logger = structlog.get_logger(__name__)

DEFAULT_VENDOR_ID = "VNDR"
DEFAULT_FIRMWARE_VERSION = "FIRMWAREVER1.0"
DEFAULT_NETWORK_PROVIDER = "AIRTEL"

# Position used in device GPS mode before the first live fix arrives
FALLBACK_LATITUDE = "30.101455"
FALLBACK_LONGITUDE = "78.289948"
# Position used in manual mode when a coordinate is blank
EMPTY_COORDINATE = "00.000000"

VEHICLE_NUMBER_LENGTH = 16
LOGIN_PROTOCOL = "AIS140"

# Simulated telemetry following the position fields of every PVT packet
PVT_TELEMETRY = (
    "0",                          # Speed (km/h)
    "117.58",                     # Heading (degrees)
    "39",                         # Satellites in view
    "286.7",                      # Altitude (m)
    "0.42",                       # PDOP
    "0.43",                       # HDOP
)

PVT_DEVICE_STATE = (
    "1",                          # Ignition
    "1",                          # Main power
    "12.2",                       # Main input voltage
    "4.1",                        # Internal battery voltage
    "0",                          # Tamper
    "C",                          # Door status: closed
    "12",                         # GSM signal strength (0-31)
    "404",                        # MCC
    "53",                         # MNC
    "16C7",                       # LAC
    "E4C2",                       # Cell ID
    "2138", "700000", "29",       # NMR 1
    "2137", "700000", "21",       # NMR 2
    "2136", "700000", "21",       # NMR 3
    "968A", "70000", "19",        # NMR 4
    "0000", "0000", "00",         # Spare
    "0",                          # Analog input
    "492894",                     # Frame number
)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def calculate_checksum(payload: str) -> str:
    """
    XOR-fold the payload after its leading sigil.

    Args:
        payload: Packet text up to, not including, the ``*``

    Returns:
        Two uppercase hex digits
    """
    checksum = 0
    for char in payload[1:]:
        checksum ^= ord(char)
    return f"{checksum & 0xFF:02X}"


def verify_checksum(packet: str) -> bool:
    """Check the trailing checksum of a complete packet."""
    if "*" not in packet:
        return False

    payload, _, checksum = packet.strip().rpartition("*")
    if not payload.startswith("$"):
        return False
    return calculate_checksum(payload) == checksum.upper()


def normalize_vehicle_number(vehicle_number: Optional[str]) -> str:
    """
    Normalize a vehicle registration for the PVT vehicle field.

    Non-alphanumerics are dropped, letters uppercased and the result
    left-padded with zeros to 16 characters. Longer values are kept whole.
    """
    cleaned = _NON_ALNUM.sub("", vehicle_number or "").upper()
    return cleaned.rjust(VEHICLE_NUMBER_LENGTH, "0")


def resolve_position(config: DeviceConfig,
                     live_coordinates: Optional[Coordinates] = None) -> Tuple[str, str]:
    """
    Pick the latitude/longitude strings a packet should carry.

    Args:
        config: Device configuration
        live_coordinates: Latest device GPS fix, if any

    Returns:
        (latitude, longitude) as decimal degree strings
    """
    if config.is_manual_position:
        return (config.latitude or EMPTY_COORDINATE,
                config.longitude or EMPTY_COORDINATE)

    if live_coordinates is not None:
        return (f"{live_coordinates.latitude:.6f}",
                f"{live_coordinates.longitude:.6f}")

    return FALLBACK_LATITUDE, FALLBACK_LONGITUDE


def _with_hemisphere(value: str, positive: str, negative: str) -> Tuple[str, str]:
    if value.startswith("-"):
        return value[1:], negative
    return value.lstrip("+"), positive


def _seal(fields: List[str]) -> str:
    payload = ",".join(fields)
    return f"{payload}*{calculate_checksum(payload)}"


def build_login_packet(config: DeviceConfig,
                       live_coordinates: Optional[Coordinates] = None) -> str:
    """
    Build the LGN packet sent once when a session opens.

    Args:
        config: Device configuration
        live_coordinates: Latest device GPS fix, if any

    Returns:
        Checksummed packet text
    """
    latitude, longitude = resolve_position(config, live_coordinates)

    fields = [
        f"${PacketKind.LOGIN.value}",
        config.vendor_id or DEFAULT_VENDOR_ID,
        config.device_imei,
        config.firmware_version or DEFAULT_FIRMWARE_VERSION,
        LOGIN_PROTOCOL,
        latitude,
        longitude,
    ]
    return _seal(fields)


def build_position_report_packet(config: DeviceConfig,
                                 live_coordinates: Optional[Coordinates] = None,
                                 now: Optional[datetime] = None,
                                 packet_type: str = "NR",
                                 alert_id: str = "1") -> str:
    """
    Build a PVT position report.

    Args:
        config: Device configuration
        live_coordinates: Latest device GPS fix, used in device GPS mode
        now: Report time, defaults to the local clock
        packet_type: Message type code (NR = normal report)
        alert_id: Alert code for the message type

    Returns:
        Checksummed packet text
    """
    now = now or datetime.now()
    latitude, longitude = resolve_position(config, live_coordinates)
    latitude, lat_hemisphere = _with_hemisphere(latitude, "N", "S")
    longitude, lon_hemisphere = _with_hemisphere(longitude, "E", "W")

    provider = (config.network_provider.value if config.network_provider
                else DEFAULT_NETWORK_PROVIDER)

    fields = [
        f"${PacketKind.POSITION_REPORT.value}",
        config.vendor_id or DEFAULT_VENDOR_ID,
        config.firmware_version or DEFAULT_FIRMWARE_VERSION,
        packet_type,
        alert_id,
        "L",                                  # Packet status: live
        config.device_imei,
        normalize_vehicle_number(config.vehicle_number),
        "1",                                  # GNSS fix
        now.strftime("%d%m%Y"),
        now.strftime("%H%M%S"),
        latitude,
        lat_hemisphere,
        longitude,
        lon_hemisphere,
        *PVT_TELEMETRY,
        provider,
        *PVT_DEVICE_STATE,
    ]
    return _seal(fields)


class ParsedPacket(BaseModel):
    """A packet split into its tag, fields and checksum."""

    tag: str = Field(..., description="Three letter message tag")
    fields: List[str] = Field(default_factory=list, description="Fields after the tag")
    checksum: str = Field(..., description="Trailing checksum as sent")

    @property
    def kind(self) -> Optional[PacketKind]:
        try:
            return PacketKind(self.tag)
        except ValueError:
            return None


class PacketParser:
    """Parser for packets received from emulated devices."""

    PACKET_PATTERN = re.compile(
        r'^\$([A-Z]{3}),'                # Tag
        r'(.*)'                          # Comma separated fields
        r'\*([0-9A-Fa-f]{2})$'           # Checksum
    )

    @classmethod
    def parse(cls, packet: str) -> Optional[ParsedPacket]:
        """
        Parse and checksum-verify one packet.

        Args:
            packet: Raw packet text

        Returns:
            ParsedPacket or None if the packet is malformed
        """
        packet = packet.strip()

        match = cls.PACKET_PATTERN.match(packet)
        if not match:
            logger.warning("Invalid packet format", packet=packet)
            return None

        if not verify_checksum(packet):
            logger.warning("Invalid packet checksum", packet=packet)
            return None

        tag, body, checksum = match.groups()
        return ParsedPacket(tag=tag, fields=body.split(","), checksum=checksum.upper())
