"""Base interface for deletion integrations"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from prunarr.exceptions import IntegrationError

logger = logging.getLogger(__name__)


@dataclass
class DeletionOutcome:
    """What an integration did for one media item"""
    integration: str
    action: str
    message: str
    bytes_freed: int = 0


class BaseIntegration(ABC):
    """Performs the deletion of one media item"""

    name: str = "base"

    @abstractmethod
    async def delete(self, media: Mapping[str, Any], strategy: Mapping[str, Any]) -> DeletionOutcome:
        """
        Delete a media item according to a rule's deletion strategy.

        Raises IntegrationError when the downstream system is unreachable or
        refuses the request.
        """
        pass


class ArrClient(BaseIntegration):
    """Shared plumbing for the Sonarr/Radarr v3 APIs"""

    def __init__(self, url: str, api_key: str, timeout: int = 30):
        self.url = url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    async def _request(self, method: str, path: str,
                       params: Optional[Dict[str, Any]] = None,
                       json: Optional[Any] = None) -> Any:
        """Call ``/api/v3{path}`` and return the decoded body (None when empty)"""
        url = f"{self.url}/api/v3{path}"
        headers = {
            'X-Api-Key': self.api_key,
            'Accept': 'application/json',
        }
        # yarl rejects bool query values
        query = {k: str(v).lower() if isinstance(v, bool) else v for k, v in (params or {}).items()}

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    params=query,
                    json=json,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise IntegrationError(
                            self.name,
                            f"{method} {path} returned {response.status}: {body[:200]}"
                        )
                    if response.status == 204 or response.content_length == 0:
                        return None
                    return await response.json(content_type=None)

        except asyncio.TimeoutError:
            raise IntegrationError(self.name, f"{method} {path} timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            raise IntegrationError(self.name, f"{method} {path} failed: {e}")

    @staticmethod
    def find_entry(entries: List[Dict[str, Any]], media: Mapping[str, Any],
                   known_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Locate a series/movie by id, then by folder path, then by title"""
        if known_id is not None:
            for entry in entries:
                if entry.get('id') == known_id:
                    return entry

        folder = os.path.dirname(media.get('path') or '')
        title = (media.get('title') or '').lower()
        for entry in entries:
            if folder and entry.get('path') == folder:
                return entry
            if title and (entry.get('title') or '').lower() == title:
                return entry
        return None
