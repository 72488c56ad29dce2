"""Feed adapter parsing and fetching tests."""

from types import SimpleNamespace

import httpx
import pytest

from services.anomaly_service.models import Severity, AnomalyType
from services.anomaly_service.exceptions import SourceFetchError
from services.anomaly_service.source_adapters.usgs_adapter import USGSEarthquakeAdapter
from services.anomaly_service.source_adapters.eonet_adapter import EONETAdapter
from services.anomaly_service.source_adapters.openweather_adapter import OpenWeatherAlertsAdapter
from services.anomaly_service.source_adapters.adapter_registry import (
    SourceAdapterRegistry, build_default_registry
)


USGS_PAYLOAD = {
    "type": "FeatureCollection",
    "features": [
        {
            "id": "ci40000001",
            "properties": {"mag": 5.4, "place": "12km NE of Ridgecrest, CA", "tsunami": 0},
            "geometry": {"type": "Point", "coordinates": [-117.6, 35.7, 8.2]},
        },
        {
            "id": "us70000002",
            "properties": {"mag": 7.3, "place": "Off the coast of Honshu", "tsunami": 1},
            "geometry": {"type": "Point", "coordinates": [142.4, 38.3, 30.0]},
        },
        {
            "id": "nogeo",
            "properties": {"mag": 2.0, "place": "Nowhere"},
            "geometry": None,
        },
    ],
}

EONET_PAYLOAD = {
    "events": [
        {
            "id": "EONET_1",
            "title": "Tropical Storm Alberto",
            "categories": [{"id": "severeStorms", "title": "Severe Storms"}],
            "sources": [{"id": "JTWC", "url": "https://example.org/storm"}],
            "geometry": [{"type": "Point", "coordinates": [-92.1, 21.4]}],
        },
        {
            "id": "EONET_2",
            "title": "Etna Volcano, Italy",
            "categories": [{"id": "volcanoes", "title": "Volcanoes"}],
            "sources": [],
            "geometry": [{"type": "Point", "coordinates": [14.99, 37.75]}],
        },
        {
            "id": "EONET_3",
            "title": "Iceberg A23A",
            "categories": [{"id": "seaLakeIce", "title": "Sea and Lake Ice"}],
            "geometry": [{"type": "Polygon", "coordinates": [[[-40.0, -60.0], [-41.0, -61.0]]]}],
        },
    ]
}

OPENWEATHER_PAYLOAD = {
    "lat": 40.7128,
    "lon": -74.006,
    "alerts": [
        {"event": "Winter Storm Warning", "description": "Heavy snow expected."},
        {"event": "Wind Advisory", "description": ""},
    ],
}


def test_usgs_severity_thresholds():
    assert USGSEarthquakeAdapter.severity_for_magnitude(7.0) == Severity.CRITICAL
    assert USGSEarthquakeAdapter.severity_for_magnitude(5.0) == Severity.HIGH
    assert USGSEarthquakeAdapter.severity_for_magnitude(3.0) == Severity.MEDIUM
    assert USGSEarthquakeAdapter.severity_for_magnitude(2.9) == Severity.LOW


def test_usgs_parse():
    candidates = USGSEarthquakeAdapter().parse(USGS_PAYLOAD)

    assert len(candidates) == 2
    first, second = candidates
    assert first.title == "Earthquake M5.4 - 12km NE of Ridgecrest, CA"
    assert first.type == AnomalyType.SEISMIC
    assert first.severity == Severity.HIGH
    assert (first.latitude, first.longitude) == (35.7, -117.6)
    assert "Depth: 8.2km" in first.description
    assert first.source_id == "ci40000001"
    assert first.source_type == "USGS Earthquakes"
    assert second.severity == Severity.CRITICAL
    assert "Tsunami warning" in second.description


def test_eonet_parse():
    storm, volcano, iceberg = EONETAdapter().parse(EONET_PAYLOAD)

    assert storm.type == AnomalyType.WEATHER
    assert storm.severity == Severity.MEDIUM
    assert (storm.latitude, storm.longitude) == (21.4, -92.1)
    assert storm.media_urls == ["https://example.org/storm"]
    assert storm.description == "Tropical Storm Alberto. Category: Severe Storms"
    assert volcano.type == AnomalyType.SEISMIC
    assert iceberg.type == AnomalyType.ENVIRONMENTAL
    assert (iceberg.latitude, iceberg.longitude) == (0, 0)


def test_openweather_parse():
    adapter = OpenWeatherAlertsAdapter(api_key="k", lat=40.7128, lon=-74.006)
    warning, advisory = adapter.parse(OPENWEATHER_PAYLOAD)

    assert warning.severity == Severity.HIGH
    assert warning.type == AnomalyType.WEATHER
    assert warning.description == "Heavy snow expected."
    assert advisory.severity == Severity.MEDIUM
    assert advisory.description == "Wind Advisory"
    assert (advisory.latitude, advisory.longitude) == (40.7128, -74.006)


@pytest.mark.parametrize(
    "adapter",
    [USGSEarthquakeAdapter(), EONETAdapter(), OpenWeatherAlertsAdapter(api_key="k", lat=0, lon=0)],
)
@pytest.mark.parametrize(
    "payload",
    [None, "not json", [], {}, {"features": "garbage", "events": 7, "alerts": [None]}],
)
def test_malformed_payload_yields_nothing(adapter, payload):
    assert adapter.parse(payload) == []


def test_usgs_skips_malformed_feature_and_keeps_the_rest():
    payload = {"features": [USGS_PAYLOAD["features"][0], None, {"geometry": {"coordinates": "bad"}}]}

    candidates = USGSEarthquakeAdapter().parse(payload)

    assert [c.source_id for c in candidates] == ["ci40000001"]


def test_eonet_skips_event_without_title():
    payload = {"events": [{"id": "EONET_X", "categories": []}, EONET_PAYLOAD["events"][1]]}

    candidates = EONETAdapter().parse(payload)

    assert [c.source_id for c in candidates] == ["EONET_2"]


def test_openweather_url_carries_key_and_coordinates():
    url = OpenWeatherAlertsAdapter(api_key="secret", lat=1.5, lon=2.5).build_url()
    assert "lat=1.5" in url
    assert "lon=2.5" in url
    assert "appid=secret" in url


@pytest.mark.asyncio
async def test_fetch_sends_user_agent_and_decodes_json():
    seen = {}

    def handler(request):
        seen["user_agent"] = request.headers["User-Agent"]
        return httpx.Response(200, json=USGS_PAYLOAD)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        adapter = USGSEarthquakeAdapter(http_client=client)
        candidates = await adapter.fetch_candidates()

    assert len(candidates) == 2
    assert seen["user_agent"].startswith("AnomalyService")


@pytest.mark.asyncio
async def test_fetch_http_error_raises_source_fetch_error():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))) as client:
        adapter = EONETAdapter(http_client=client)
        with pytest.raises(SourceFetchError) as exc_info:
            await adapter.fetch()

    assert "HTTP 503" in str(exc_info.value)
    assert exc_info.value.source_name == "NASA EONET"


@pytest.mark.asyncio
async def test_fetch_invalid_json_raises_source_fetch_error():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))) as client:
        adapter = EONETAdapter(http_client=client)
        with pytest.raises(SourceFetchError):
            await adapter.fetch()


def test_default_registry_skips_weather_without_key():
    config = SimpleNamespace(openweathermap_api_key=None, openweathermap_lat=0.0, openweathermap_lon=0.0)
    names = [a.name for a in build_default_registry(config).list_adapters()]
    assert names == ["USGS Earthquakes", "NASA EONET"]

    config.openweathermap_api_key = "key"
    assert len(build_default_registry(config)) == 3


def test_registry_register_and_unregister():
    registry = SourceAdapterRegistry()
    registry.register(EONETAdapter())

    assert registry.get("NASA EONET") is not None
    assert registry.unregister("NASA EONET") is True
    assert registry.unregister("NASA EONET") is False
    assert registry.list_adapters() == []
