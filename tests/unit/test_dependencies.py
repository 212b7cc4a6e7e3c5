"""Unit tests for request helpers shared by the routers."""

from typing import Dict, Optional, Tuple

import pytest
from starlette.requests import Request

from middleware import client_context_from_request
from routers.dependencies import get_bearer_token, get_client_context


def make_request(headers: Dict[str, str], client: Optional[Tuple[str, int]] = ("192.0.2.10", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
        "state": {},
    }
    return Request(scope)


class TestBearerToken:
    """Test cases for Authorization header parsing."""

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer   abc.def.ghi ", "abc.def.ghi"),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer", None),
            ("Bearer ", None),
        ],
    )
    def test_parsing(self, header, expected) -> None:
        assert get_bearer_token(make_request({"Authorization": header})) == expected

    def test_missing_header(self) -> None:
        assert get_bearer_token(make_request({})) is None


class TestClientContext:
    """Test cases for client metadata capture."""

    def test_forwarded_for_first_hop(self) -> None:
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "agent/2"})

        client = client_context_from_request(request)

        assert client.ip_address == "203.0.113.7"
        assert client.user_agent == "agent/2"

    def test_peer_address(self) -> None:
        assert client_context_from_request(make_request({})).ip_address == "192.0.2.10"

    def test_unknown_peer(self) -> None:
        assert client_context_from_request(make_request({}, client=None)).ip_address == "unknown"

    def test_dependency_prefers_middleware_state(self) -> None:
        request = make_request({"User-Agent": "from-headers"})
        request.state.client = client_context_from_request(make_request({"User-Agent": "from-state"}))

        assert get_client_context(request).user_agent == "from-state"
