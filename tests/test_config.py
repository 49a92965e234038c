from __future__ import annotations

import pytest
from pydantic import ValidationError

from ais140_emulator.config import Settings, parse_servers
from ais140_emulator.errors import ConfigValidationError
from ais140_emulator.models import PositionSource
from ais140_emulator.transport import HTTPRelayTransport, TCPTransport, create_transport


def test_parse_servers_assigns_ids_in_order() -> None:
    targets = parse_servers("34.225.227.181:5001, localhost:6000,")

    assert [t.id for t in targets] == ["server_1", "server_2"]
    assert targets[0].host == "34.225.227.181"
    assert targets[1].port == 6000


@pytest.mark.parametrize("servers", ["localhost", ":5001", "localhost:", "localhost:99999"])
def test_parse_servers_rejects_malformed_entries(servers: str) -> None:
    with pytest.raises(ConfigValidationError):
        parse_servers(servers)


def test_parse_servers_empty_list() -> None:
    assert parse_servers("") == []


def test_settings_build_manual_device_config() -> None:
    settings = Settings(
        _env_file=None,
        device_imei="866772041471415",
        network_provider="bsnl",
        use_gps_coordinates=False,
        latitude="19.0760",
        longitude="72.8777",
    )
    config = settings.device_config()

    assert config.position_source == PositionSource.MANUAL
    assert config.vendor_id is None
    assert config.network_provider.value == "BSNL"
    config.validate_for_transmission()


def test_settings_unknown_provider_is_validation_error() -> None:
    settings = Settings(_env_file=None, network_provider="Jio")

    with pytest.raises(ConfigValidationError) as exc_info:
        settings.device_config()
    assert exc_info.value.field == "network_provider"


@pytest.mark.parametrize("field, value", [
    ("transport", "udp"),
    ("relay_url", "ftp://relay"),
    ("log_level", "LOUD"),
    ("send_interval", 0),
])
def test_settings_reject_invalid_values(field: str, value) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_settings_normalize_case() -> None:
    settings = Settings(_env_file=None, transport="HTTP", log_level="debug", log_format="JSON")
    assert settings.transport == "http"
    assert settings.log_level == "DEBUG"
    assert settings.log_format == "json"


def test_create_transport_follows_settings() -> None:
    tcp = create_transport(Settings(_env_file=None, idle_timeout=3.0))
    http = create_transport(Settings(_env_file=None, transport="http", relay_url="https://relay.test/x"))

    assert isinstance(tcp, TCPTransport)
    assert tcp.idle_timeout == 3.0
    assert isinstance(http, HTTPRelayTransport)
    assert http.relay_url == "https://relay.test/x"


def test_summary_mentions_transport() -> None:
    summary = Settings(_env_file=None, servers="localhost:5001").get_summary()
    assert summary["transport"] == "tcp"
    assert summary["servers"] == "localhost:5001"
    assert summary["relay_url"] is None


def test_sessions_are_unbounded_by_default() -> None:
    settings = Settings(_env_file=None)

    assert settings.max_session_lifetime == 0
    assert settings.get_summary()["max_session_lifetime"] == "unbounded"
