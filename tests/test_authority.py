import httpx
import pytest

from afr import db
from afr.authority import AuthorityError, VersionAuthority
from afr.models import FleetSpec
from afr.versions import VersionResolver

from conftest import make_pod


HOSTS = [
    {"entityId": "HOST-1", "ipAddresses": ["10.0.0.1"], "agentVersion": {"major": 1, "minor": 149, "revision": 140, "timestamp": "20180712-102418"}},
    {"entityId": "HOST-2", "ipAddresses": ["10.0.0.2", "172.17.0.1"]},
]


def _client(handler):
    return VersionAuthority(
        "https://authority.example/api/", "api-token", "paas-token", transport=httpx.MockTransport(handler)
    )


def test_latest_recommended_uses_installer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"latestAgentVersion": "1.149.140.20180712-102418"})

    assert _client(handler).latest_recommended() == "1.149.140.20180712-102418"
    assert seen["path"] == "/api/v1/deployment/installer/agent/unix/default/latest/metainfo"
    assert seen["auth"] == "Api-Token paas-token"


def test_installed_at_matches_host_ip_and_caches_host_list():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        assert request.headers["Authorization"] == "Api-Token api-token"
        return httpx.Response(200, json=HOSTS)

    auth = _client(handler)
    assert auth.installed_at("10.0.0.1") == "1.149.140.20180712-102418"
    with pytest.raises(AuthorityError, match="no agent version"):
        auth.installed_at("172.17.0.1")
    with pytest.raises(AuthorityError, match="no agent found"):
        auth.installed_at("10.9.9.9")
    assert calls == ["/api/v1/entity/infrastructure/hosts"]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
def test_latest_recommended_errors(response):
    with pytest.raises(AuthorityError):
        _client(lambda request: response).latest_recommended()


def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AuthorityError, match="ConnectError"):
        _client(handler).installed_at("10.0.0.1")


def test_empty_api_url_is_rejected():
    with pytest.raises(AuthorityError):
        VersionAuthority.for_fleet(FleetSpec(), "a", "p")


def test_malformed_host_entries_are_skipped():
    hosts = [None, "HOST-0", {"ipAddresses": "10.0.0.1"}, {"ipAddresses": ["10.0.0.1"], "agentVersion": {"major": 1}}]
    auth = _client(lambda request: httpx.Response(200, json=hosts))

    assert auth.installed_at("10.0.0.1") == "1.0.0"
    with pytest.raises(AuthorityError, match="no agent found"):
        auth.installed_at("10.0.0.2")


def test_malformed_host_list_does_not_escape_resolver():
    auth = _client(lambda request: httpx.Response(200, json=[None, 42]))
    resolver = VersionResolver(auth, "monitoring/agents")

    version, err = resolver.resolve_installed(make_pod("agents-a", "n1", "10.0.0.1"))

    assert version == ""
    assert isinstance(err, AuthorityError)
    assert db.count_events(level="WARN", fleet="monitoring/agents", contains="10.0.0.1") == 1
