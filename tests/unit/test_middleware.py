"""Unit tests for the route label used by request logs and metrics."""

from types import SimpleNamespace

import pytest
from fastapi import Request

from educonnect.api.middleware import _route_template


def _request(path: str, route_path: str | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "query_string": b"",
        "headers": [],
    }
    if route_path is not None:
        scope["route"] = SimpleNamespace(path=route_path)
    return Request(scope)


class TestRouteTemplate:
    @pytest.mark.parametrize(
        ("path", "route_path", "expected"),
        [
            (
                "/api/invitations/1b4e28ba-2fa1-11d2-883f-0016d3cca427/resend",
                "/{invitation_id}/resend",
                "/api/invitations/{invitation_id}/resend",
            ),
            (
                "/api/invitations/1b4e28ba-2fa1-11d2-883f-0016d3cca427/resend",
                "/api/invitations/{invitation_id}/resend",
                "/api/invitations/{invitation_id}/resend",
            ),
            ("/api/auth/login", "/login", "/api/auth/login"),
            ("/api/system-admin/login", "/login", "/api/system-admin/login"),
            ("/api/invitations/statistics", "/statistics", "/api/invitations/statistics"),
        ],
    )
    def test_template_carries_router_prefix(self, path, route_path, expected):
        assert _route_template(_request(path, route_path)) == expected

    def test_unmatched_request(self):
        assert _route_template(_request("/nowhere")) == "unmatched"
