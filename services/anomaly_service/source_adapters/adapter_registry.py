# adapter_registry.py - Registry of external feed adapters
# This file holds the adapters the ingestion scheduler fans out to on every cycle.

from typing import Dict, List, Optional
import logging

from .base_adapter import BaseSourceAdapter
from .usgs_adapter import USGSEarthquakeAdapter
from .eonet_adapter import EONETAdapter
from .openweather_adapter import OpenWeatherAlertsAdapter

logger = logging.getLogger(__name__)

class SourceAdapterRegistry:
    def __init__(self):
        self._adapters: Dict[str, BaseSourceAdapter] = {}

    def register(self, adapter: BaseSourceAdapter):
        if adapter.name in self._adapters:
            logger.warning(f"Replacing already registered source adapter {adapter.name}")
        self._adapters[adapter.name] = adapter
        logger.info(f"Registered source adapter {adapter.name} ({adapter.source_type})")

    def unregister(self, name: str) -> bool:
        return self._adapters.pop(name, None) is not None

    def get(self, name: str) -> Optional[BaseSourceAdapter]:
        return self._adapters.get(name)

    def list_adapters(self) -> List[BaseSourceAdapter]:
        return list(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry(config) -> SourceAdapterRegistry:
    """Register the built-in feeds. OpenWeatherMap is skipped without an API key."""
    registry = SourceAdapterRegistry()
    registry.register(USGSEarthquakeAdapter())
    registry.register(EONETAdapter())

    if config.openweathermap_api_key:
        registry.register(OpenWeatherAlertsAdapter(
            api_key=config.openweathermap_api_key,
            lat=config.openweathermap_lat,
            lon=config.openweathermap_lon
        ))
    else:
        logger.info("OpenWeatherMap API key not configured, weather alerts disabled")

    return registry
