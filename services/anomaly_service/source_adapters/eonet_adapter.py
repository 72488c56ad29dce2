# eonet_adapter.py - NASA EONET natural events feed

from typing import Any, Dict, List, Optional

from ..models import CandidateAnomaly, Severity
from .base_adapter import BaseSourceAdapter

EONET_ENDPOINT = "https://eonet.gsfc.nasa.gov/api/v3/events?limit=10"

class EONETAdapter(BaseSourceAdapter):
    def __init__(self, config: Dict[str, Any] = None, **kwargs):
        config = config or {}
        super().__init__("NASA EONET", "environmental", config.get("endpoint", EONET_ENDPOINT), config, **kwargs)

    @staticmethod
    def type_for_category(category: str) -> str:
        category = category.lower()
        if "storm" in category:
            return "weather"
        if "volcano" in category:
            return "seismic"
        return "environmental"

    def _items(self, payload: Any) -> List[Any]:
        return (payload.get("events") if isinstance(payload, dict) else None) or []

    def _parse_item(self, event: Any, payload: Any) -> Optional[CandidateAnomaly]:
        categories = event.get("categories") or []
        category = (categories[0].get("title") if categories else None) or "Unknown"
        geometry = (event.get("geometry") or [{}])[0]
        coords = geometry.get("coordinates") or [0, 0]

        # Polygon geometries have nested coordinates; those fall back to 0
        longitude = coords[0] if len(coords) > 0 and isinstance(coords[0], (int, float)) else 0
        latitude = coords[1] if len(coords) > 1 and isinstance(coords[1], (int, float)) else 0

        return CandidateAnomaly(
            title=event["title"],
            description=f"{event['title']}. Category: {category}",
            type=self.type_for_category(category),
            severity=Severity.MEDIUM,
            latitude=latitude,
            longitude=longitude,
            location=event["title"],
            raw_data=event,
            media_urls=[s["url"] for s in event.get("sources") or [] if s.get("url")],
            source_id=event.get("id")
        )
