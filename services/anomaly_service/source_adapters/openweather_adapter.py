# openweather_adapter.py - OpenWeatherMap One Call weather alerts

from typing import Any, Dict, List, Optional

from ..models import CandidateAnomaly, Severity
from .base_adapter import BaseSourceAdapter

OPENWEATHER_ENDPOINT = "https://api.openweathermap.org/data/2.5/onecall"

class OpenWeatherAlertsAdapter(BaseSourceAdapter):
    def __init__(self, api_key: str, lat: float, lon: float, config: Dict[str, Any] = None, **kwargs):
        config = config or {}
        super().__init__("OpenWeatherMap Alerts", "weather",
                         config.get("endpoint", OPENWEATHER_ENDPOINT), config, **kwargs)
        self.api_key = api_key
        self.lat = lat
        self.lon = lon

    def build_url(self) -> str:
        separator = "&" if "?" in self.endpoint else "?"
        return f"{self.endpoint}{separator}lat={self.lat}&lon={self.lon}&exclude=minutely,hourly,daily&appid={self.api_key}"

    def _items(self, payload: Any) -> List[Any]:
        return (payload.get("alerts") if isinstance(payload, dict) else None) or []

    def _parse_item(self, alert: Any, payload: Any) -> Optional[CandidateAnomaly]:
        lat = payload.get("lat") or 0
        lon = payload.get("lon") or 0

        return CandidateAnomaly(
            title=alert["event"],
            description=alert.get("description") or alert["event"],
            type="weather",
            severity=Severity.HIGH if "warning" in alert["event"].lower() else Severity.MEDIUM,
            latitude=lat,
            longitude=lon,
            location=f"{lat}, {lon}",
            raw_data=alert
        )
