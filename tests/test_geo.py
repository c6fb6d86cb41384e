import pytest
import requests

from storefront.core.config import settings
from storefront.services import geo
from storefront.services.geo import GeoResolver, distance_km, is_private_ip


class FakeResponse:
    def __init__(self, status_code: int, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeHttp:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def test_distance_is_zero_for_same_point_and_symmetric():
    assert distance_km(24.7136, 46.6753, 24.7136, 46.6753) == 0
    there = distance_km(24.7136, 46.6753, 21.4858, 39.1925)
    back = distance_km(21.4858, 39.1925, 24.7136, 46.6753)
    assert there == pytest.approx(back)
    assert 840 < there < 860


def test_one_degree_of_latitude_is_about_111_km():
    assert distance_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)


@pytest.mark.parametrize(
    "ip",
    ["127.0.0.1", "10.1.2.3", "192.168.0.10", "172.16.5.4", "169.254.1.1", "::1", "::ffff:127.0.0.1"],
)
def test_private_addresses(ip):
    assert is_private_ip(ip)


@pytest.mark.parametrize("ip", ["8.8.8.8", "nonsense", "1.2.3.4.5", ""])
def test_public_and_unparseable_addresses_are_not_private(ip):
    assert not is_private_ip(ip)


@pytest.mark.anyio
@pytest.mark.parametrize("ip", ["nonsense", "evil.example, 8.8.8.8", "999.1.1.1"])
async def test_unparseable_address_is_unknown_location(ip):
    http = FakeHttp()

    assert await GeoResolver(http=http).resolve_from_ip(ip) is None
    assert http.calls == []


class FakeSession(FakeHttp):
    opened = []

    def __init__(self):
        super().__init__(FakeResponse(200, {"status": "success", "lat": 24.7, "lon": 46.7}))
        self.closed = False
        FakeSession.opened.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


@pytest.mark.anyio
async def test_each_lookup_uses_its_own_session(monkeypatch):
    FakeSession.opened = []
    monkeypatch.setattr(geo.requests, "Session", FakeSession)
    resolver = GeoResolver()

    await resolver.resolve_from_ip("8.8.8.8")
    await resolver.resolve_from_ip("8.8.4.4")

    assert len(FakeSession.opened) == 2
    assert all(len(s.calls) == 1 and s.closed for s in FakeSession.opened)


@pytest.mark.anyio
async def test_loopback_returns_fallback_without_network_call():
    http = FakeHttp()
    location = await GeoResolver(http=http).resolve_from_ip("127.0.0.1")

    assert http.calls == []
    assert location.source == "fallback"
    assert location.city == settings.FALLBACK_CITY
    assert (location.latitude, location.longitude) == (
        settings.FALLBACK_LATITUDE,
        settings.FALLBACK_LONGITUDE,
    )


@pytest.mark.anyio
async def test_successful_lookup_maps_payload():
    http = FakeHttp(
        FakeResponse(
            200,
            {
                "status": "success",
                "lat": 21.4858,
                "lon": 39.1925,
                "city": "Jeddah",
                "country": "Saudi Arabia",
                "regionName": "Makkah",
            },
        )
    )
    location = await GeoResolver(http=http, timeout=2.0).resolve_from_ip("8.8.8.8")

    assert location.source == "ip"
    assert location.city == "Jeddah"
    assert location.region == "Makkah"
    assert (location.latitude, location.longitude) == (21.4858, 39.1925)
    assert http.calls[0]["url"] == settings.GEOIP_URL.format(ip="8.8.8.8")
    assert http.calls[0]["timeout"] == 2.0


@pytest.mark.anyio
@pytest.mark.parametrize(
    "http",
    [
        FakeHttp(error=requests.Timeout("slow")),
        FakeHttp(error=requests.ConnectionError("down")),
        FakeHttp(FakeResponse(503, {})),
        FakeHttp(FakeResponse(200, {"status": "fail", "message": "reserved range"})),
        FakeHttp(FakeResponse(200, ValueError("not json"))),
        FakeHttp(FakeResponse(200, {"status": "success", "lat": "north"})),
    ],
    ids=["timeout", "connection", "http-503", "status-fail", "bad-json", "malformed"],
)
async def test_failed_lookups_return_none(http):
    assert await GeoResolver(http=http).resolve_from_ip("8.8.4.4") is None
