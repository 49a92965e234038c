from __future__ import annotations

import re
from datetime import datetime

import pytest

from ais140_emulator.models import Coordinates, DeviceConfig, PacketKind, PositionSource
from ais140_emulator.packet_encoder import (
    FALLBACK_LATITUDE,
    FALLBACK_LONGITUDE,
    PacketParser,
    build_login_packet,
    build_position_report_packet,
    calculate_checksum,
    normalize_vehicle_number,
    verify_checksum,
)

PACKET_RE = re.compile(r"^\$[A-Z]{3},.*\*[0-9A-F]{2}$")
REPORT_TIME = datetime(2026, 10, 19, 9, 5, 7)


def _xor_payload(packet: str) -> str:
    body = packet[1:packet.rindex("*")]
    value = 0
    for char in body:
        value ^= ord(char)
    return f"{value:02X}"


def test_login_packet_for_scenario_device(device_config: DeviceConfig) -> None:
    packet = build_login_packet(device_config)

    assert packet.startswith("$LGN,VNDR,866772041471415,")
    assert packet == (
        "$LGN,VNDR,866772041471415,FIRMWAREVER1.0,AIS140,"
        f"{FALLBACK_LATITUDE},{FALLBACK_LONGITUDE}*69"
    )


def test_login_packet_has_no_trailer_literal(device_config: DeviceConfig) -> None:
    packet = build_login_packet(device_config)
    assert packet.count("*") == 1


def test_position_report_field_layout(device_config: DeviceConfig) -> None:
    packet = build_position_report_packet(device_config, now=REPORT_TIME)
    fields = packet[:packet.rindex("*")].split(",")

    assert len(fields) == 50
    assert fields[:9] == [
        "$PVT", "VNDR", "FIRMWAREVER1.0", "NR", "1", "L",
        "866772041471415", "000000PB01BV2345", "1",
    ]
    assert fields[9] == "19102026"
    assert fields[10] == "090507"
    assert fields[11:15] == [FALLBACK_LATITUDE, "N", FALLBACK_LONGITUDE, "E"]
    assert fields[21] == "Airtel"
    assert fields[-2:] == ["0", "492894"]


def test_position_report_packet_type_and_alert(device_config: DeviceConfig) -> None:
    packet = build_position_report_packet(
        device_config, now=REPORT_TIME, packet_type="EPB", alert_id="10"
    )
    fields = packet.split(",")
    assert fields[3:5] == ["EPB", "10"]


@pytest.mark.parametrize("config", [
    DeviceConfig(),
    DeviceConfig(device_imei="866772041471415"),
    DeviceConfig(device_imei="866772041471415", position_source=PositionSource.MANUAL),
    DeviceConfig(device_imei="1", vehicle_number="@@@", network_provider="BSNL"),
])
def test_packets_are_well_formed(config: DeviceConfig) -> None:
    for packet in (build_login_packet(config), build_position_report_packet(config)):
        assert PACKET_RE.match(packet), packet
        assert packet[-2:] == _xor_payload(packet)
        assert verify_checksum(packet)


def test_defaults_for_missing_fields() -> None:
    packet = build_position_report_packet(DeviceConfig(device_imei="866772041471415"), now=REPORT_TIME)
    fields = packet.split(",")

    assert fields[1] == "VNDR"
    assert fields[2] == "FIRMWAREVER1.0"
    assert fields[21] == "AIRTEL"
    assert fields[7] == "0" * 16


def test_live_coordinates_used_in_gps_mode(device_config: DeviceConfig) -> None:
    fix = Coordinates(latitude=12.5, longitude=-45.25)
    packet = build_position_report_packet(device_config, fix, now=REPORT_TIME)
    assert ",12.500000,N,45.250000,W," in packet

    login = build_login_packet(device_config, live_coordinates=fix)
    assert login.split("*")[0].endswith(",12.500000,-45.250000")


def test_manual_coordinates_ignore_live_fix() -> None:
    config = DeviceConfig(
        device_imei="866772041471415",
        position_source=PositionSource.MANUAL,
        latitude="-19.0760",
        longitude="72.8777",
    )
    packet = build_position_report_packet(
        config, Coordinates(latitude=1.0, longitude=1.0), now=REPORT_TIME
    )
    assert ",19.0760,S,72.8777,E," in packet

    login = build_login_packet(config)
    assert login.split("*")[0].endswith(",-19.0760,72.8777")


def test_checksum_skips_leading_sigil() -> None:
    assert calculate_checksum("$A") == "41"
    assert calculate_checksum("$AB") == f"{ord('A') ^ ord('B'):02X}"
    assert calculate_checksum("$") == "00"


def test_verify_checksum_rejects_tampering(device_config: DeviceConfig) -> None:
    packet = build_login_packet(device_config)
    assert verify_checksum(packet)
    assert not verify_checksum(packet.replace("VNDR", "VNDX"))
    assert not verify_checksum(packet.split("*")[0])


@pytest.mark.parametrize("raw, expected", [
    ("PB01BV2345", "000000PB01BV2345"),
    ("pb-01 bv/2345", "000000PB01BV2345"),
    ("", "0000000000000000"),
    (None, "0000000000000000"),
    ("ABCDEFGHIJKLMNOPQR", "ABCDEFGHIJKLMNOPQR"),
])
def test_normalize_vehicle_number(raw, expected) -> None:
    assert normalize_vehicle_number(raw) == expected


def test_normalize_vehicle_number_is_idempotent() -> None:
    once = normalize_vehicle_number("MH-12-ab-1234")
    assert len(once) == 16
    assert normalize_vehicle_number(once) == once


def test_parser_splits_valid_packet(device_config: DeviceConfig) -> None:
    parsed = PacketParser.parse(build_position_report_packet(device_config, now=REPORT_TIME))

    assert parsed is not None
    assert parsed.kind == PacketKind.POSITION_REPORT
    assert parsed.fields[5] == "866772041471415"
    assert len(parsed.fields) == 49


@pytest.mark.parametrize("packet", [
    "",
    "PVT,1,2*00",
    "$LGN,VNDR,866772041471415*00",
    "$lgn,VNDR*12",
])
def test_parser_rejects_bad_packets(packet: str) -> None:
    assert PacketParser.parse(packet) is None


def test_parser_unknown_tag_has_no_kind() -> None:
    payload = "$HBT,VNDR"
    parsed = PacketParser.parse(f"{payload}*{calculate_checksum(payload)}")
    assert parsed is not None
    assert parsed.tag == "HBT"
    assert parsed.kind is None
