"""Tests for HttpRegistry using httpx.MockTransport."""

import httpx
import pytest

from palletkit.core.errors import AuthFailure, NetworkFailure, NotFound, SourceResolutionError
from palletkit.core.registry.abc import CrateVersion
from palletkit.core.registry.http import HttpRegistry

API = "https://registry.example.com"


def _registry(handler, token: str | None = None) -> HttpRegistry:
    return HttpRegistry(api_url=API + "/", timeout=5.0, token=token, transport=httpx.MockTransport(handler))


def test_fetch_crate_parses_versions() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "crate": {"name": "pallet-balances", "max_version": "4.1.0"},
                "versions": [
                    {"num": "4.1.0", "yanked": False},
                    {"num": "4.0.1", "yanked": True},
                    {"num": "4.0.0"},
                ],
            },
        )

    registry = _registry(handler)
    info = registry.fetch_crate("pallet-balances")

    assert registry.location == API
    assert str(requests[0].url) == f"{API}/api/v1/crates/pallet-balances"
    assert requests[0].headers["User-Agent"].startswith("palletkit")
    assert "Authorization" not in requests[0].headers
    assert info.versions == (
        CrateVersion(num="4.1.0"),
        CrateVersion(num="4.0.1", yanked=True),
        CrateVersion(num="4.0.0"),
    )
    assert info.available_versions() == ["4.1.0", "4.0.0"]


def test_token_is_sent_verbatim() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={"crate": {"name": "x"}, "versions": []})

    _registry(handler, token="opaque-token").fetch_crate("x")

    assert seen == ["opaque-token"]


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (404, NotFound),
        (401, AuthFailure),
        (403, AuthFailure),
        (429, NetworkFailure),
        (500, NetworkFailure),
        (503, NetworkFailure),
        (302, SourceResolutionError),
    ],
)
def test_status_codes_map_to_errors(status: int, error: type[Exception]) -> None:
    registry = _registry(lambda request: httpx.Response(status))

    with pytest.raises(error):
        registry.fetch_crate("pallet-balances")


def test_only_transient_statuses_are_retryable() -> None:
    with pytest.raises(NetworkFailure) as exc_info:
        _registry(lambda request: httpx.Response(503)).fetch_crate("x")
    assert exc_info.value.retryable

    with pytest.raises(AuthFailure) as auth_info:
        _registry(lambda request: httpx.Response(401)).fetch_crate("x")
    assert not auth_info.value.retryable


def test_transport_error_is_network_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkFailure, match="Could not reach registry"):
        _registry(handler).fetch_crate("pallet-balances")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"<html>not json</html>"),
        httpx.Response(200, json={"versions": []}),
        httpx.Response(200, json={"crate": {"name": "x"}, "versions": [{"yanked": False}]}),
    ],
)
def test_malformed_response_is_resolution_error(response: httpx.Response) -> None:
    with pytest.raises(SourceResolutionError, match="Malformed response"):
        _registry(lambda request: response).fetch_crate("x")
