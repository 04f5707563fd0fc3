"""Tests for cloudflared output parsers."""

import json

import pytest

from cloudtunnel.common.exceptions import CreationParseError, ExternalToolError
from cloudtunnel.daemon.parsers import (
    parse_created_tunnel_id,
    parse_tunnel_list,
    remediation_hint,
)

TUNNEL_LIST_OUTPUT = json.dumps(
    [
        {
            "id": "6ff42ae2-765d-4adf-8112-31c55c1551ef",
            "name": "web",
            "created_at": "2024-05-01T09:00:00Z",
            "deleted_at": "0001-01-01T00:00:00Z",
            "connections": [
                {"colo_name": "ams01", "id": "c1", "is_pending_reconnect": False},
                {"colo_name": "fra05", "id": "c2", "is_pending_reconnect": False},
            ],
        },
        {
            "id": "9a8b7c6d-1234-4e5f-a6b7-c8d9e0f1a2b3",
            "name": "staging",
            "created_at": "2024-05-02T09:00:00Z",
            "connections": [],
        },
        {"id": "0c0c0c0c-1111-4222-8333-444455556666", "name": "bare"},
    ]
)

CREATE_OUTPUT = """\
2024-05-01T09:00:00Z INF Tunnel credentials written to /home/u/.cloudflared/6ff42ae2-765d-4adf-8112-31c55c1551ef.json.
Created tunnel my-tunnel with id 6ff42ae2-765d-4adf-8112-31c55c1551ef
"""


class TestParseTunnelList:
    """Test parsing of `tunnel list --output json`."""

    def test_parses_entries(self):
        tunnels = parse_tunnel_list(TUNNEL_LIST_OUTPUT)

        assert [t.name for t in tunnels] == ["web", "staging", "bare"]
        assert [t.connection_count for t in tunnels] == [2, 0, 0]
        assert tunnels[0].id == "6ff42ae2-765d-4adf-8112-31c55c1551ef"

    @pytest.mark.parametrize("output", ["[]", "null", "  null\n"])
    def test_empty_listing(self, output):
        assert parse_tunnel_list(output) == []

    @pytest.mark.parametrize(
        "output",
        [
            "",
            "You need to login first",
            '{"id": "abc"}',
            '[{"name": "no id"}]',
            '["abc"]',
        ],
    )
    def test_malformed_output(self, output):
        with pytest.raises(ExternalToolError):
            parse_tunnel_list(output)


class TestParseCreatedTunnelId:
    """Test id extraction from `tunnel create` output."""

    def test_extracts_id(self):
        assert (
            parse_created_tunnel_id(CREATE_OUTPUT)
            == "6ff42ae2-765d-4adf-8112-31c55c1551ef"
        )

    def test_case_insensitive(self):
        assert parse_created_tunnel_id("created TUNNEL x WITH ID abc-123") == "abc-123"

    def test_unparsable_output_carries_raw_text(self):
        output = "Tunnel created, but the output format changed"

        with pytest.raises(CreationParseError) as exc_info:
            parse_created_tunnel_id(output)

        assert exc_info.value.output == output
        assert exc_info.value.hint is not None
        assert isinstance(exc_info.value, ExternalToolError)


class TestRemediationHint:
    """Test error text to hint mapping."""

    def test_known_errors(self):
        assert "different name" in remediation_hint(
            "failed to create tunnel: tunnel with name already exists", "create"
        )
        assert "DNS record" in remediation_hint(
            "An A, AAAA, or CNAME record with that host already exists.", "route"
        )
        assert "permission" in remediation_hint("Unauthorized: bad token", "route")
        assert "--force" in remediation_hint(
            "You have an existing certificate at ~/.cloudflared/cert.pem", "login"
        )
        assert "cloudtunnel stop" in remediation_hint("tunnel is Already Running", "run")

    def test_first_match_wins(self):
        hint = remediation_hint("already running; credentials not found", "run")
        assert "cloudtunnel stop" in hint

    def test_unknown_error(self):
        assert remediation_hint("something odd happened", "create") is None
        assert remediation_hint("already exists", "stop") is None
