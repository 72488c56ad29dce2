# usgs_adapter.py - USGS earthquake GeoJSON feed

from typing import Any, Dict, List, Optional

from ..models import CandidateAnomaly, Severity
from .base_adapter import BaseSourceAdapter

USGS_ENDPOINT = "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/all_hour.geojson"

class USGSEarthquakeAdapter(BaseSourceAdapter):
    def __init__(self, config: Dict[str, Any] = None, **kwargs):
        config = config or {}
        super().__init__("USGS Earthquakes", "seismic", config.get("endpoint", USGS_ENDPOINT), config, **kwargs)

    @staticmethod
    def severity_for_magnitude(magnitude: float) -> Severity:
        if magnitude >= 7:
            return Severity.CRITICAL
        if magnitude >= 5:
            return Severity.HIGH
        if magnitude >= 3:
            return Severity.MEDIUM
        return Severity.LOW

    def _items(self, payload: Any) -> List[Any]:
        return (payload.get("features") if isinstance(payload, dict) else None) or []

    def _parse_item(self, feature: Any, payload: Any) -> Optional[CandidateAnomaly]:
        props = feature.get("properties") or {}
        coords = (feature.get("geometry") or {}).get("coordinates") or []
        if len(coords) < 2:
            return None

        magnitude = props.get("mag")
        place = props.get("place") or "Unknown location"
        depth = coords[2] if len(coords) > 2 else None
        tsunami = " Tsunami warning issued." if props.get("tsunami") else ""

        return CandidateAnomaly(
            title=f"Earthquake M{magnitude} - {place}",
            description=f"A magnitude {magnitude} earthquake occurred at {place}. Depth: {depth}km.{tsunami}",
            type="seismic",
            severity=self.severity_for_magnitude(float(magnitude or 0)),
            latitude=coords[1],
            longitude=coords[0],
            location=place,
            raw_data={**props, "coordinates": coords},
            source_id=feature.get("id")
        )
