# base_adapter.py - Abstract base class for external feed adapters
# This file defines the fetch/parse interface consumed by the ingestion scheduler.

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import logging
import httpx

from ..models import CandidateAnomaly
from ..exceptions import SourceFetchError
from ..config import settings

logger = logging.getLogger(__name__)

class BaseSourceAdapter(ABC):
    def __init__(self, name: str, source_type: str, endpoint: str,
                 config: Dict[str, Any] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.name = name
        self.source_type = source_type
        self.endpoint = endpoint
        self.config = config or {}
        self.timeout = self.config.get("timeout", settings.source_fetch_timeout)
        self.http_client = http_client

    def build_url(self) -> str:
        return self.endpoint

    async def fetch(self) -> Any:
        """Download the raw feed payload. Raises SourceFetchError on any failure."""
        url = self.build_url()
        headers = {"User-Agent": settings.source_user_agent}

        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers=headers)
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException:
            raise SourceFetchError(self.name, f"request timed out after {self.timeout} seconds")
        except httpx.HTTPStatusError as e:
            raise SourceFetchError(self.name, f"HTTP {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(self.name, str(e))

    def parse(self, payload: Any) -> List[CandidateAnomaly]:
        """Normalize a payload into candidates.

        A malformed payload yields []; a malformed item is skipped and the
        rest of the feed is kept.
        """
        try:
            items = list(self._items(payload))
        except Exception as e:
            logger.error(f"Failed to parse payload from {self.name}: {str(e)}")
            return []

        candidates = []
        for index, item in enumerate(items):
            try:
                candidate = self._parse_item(item, payload)
            except Exception as e:
                logger.warning(f"Skipping malformed item {index} from {self.name}: {str(e)}")
                continue
            if candidate is None:
                continue
            candidate.source_type = self.name
            candidates.append(candidate)
        return candidates

    @abstractmethod
    def _items(self, payload: Any) -> List[Any]:
        """Return the raw items of a payload. May raise; parse() converts errors to []."""
        pass

    @abstractmethod
    def _parse_item(self, item: Any, payload: Any) -> Optional[CandidateAnomaly]:
        """Build one candidate, or None to skip the item quietly."""
        pass

    async def fetch_candidates(self) -> List[CandidateAnomaly]:
        return self.parse(await self.fetch())

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source_type": self.source_type,
            "endpoint": self.endpoint
        }
