import logging
from typing import Any, Dict, Mapping

from prunarr.exceptions import IntegrationError
from .base import ArrClient, DeletionOutcome

logger = logging.getLogger(__name__)


class SonarrIntegration(ArrClient):
    """Deletes show media through Sonarr"""

    name = "sonarr"

    async def _find_series(self, media: Mapping[str, Any]) -> Dict[str, Any]:
        series_list = await self._request("GET", "/series") or []
        series = self.find_entry(series_list, media, media.get('sonarr_id'))
        if series is None:
            raise IntegrationError(self.name, f"Series not found for: {media.get('title') or media.get('path')}")
        return series

    async def delete(self, media: Mapping[str, Any], strategy: Mapping[str, Any]) -> DeletionOutcome:
        series = await self._find_series(media)
        action = strategy.get('sonarr', 'file_only')
        delete_files = strategy.get('delete_files', True)
        exclusion = strategy.get('add_import_exclusion', False)
        filename = media.get('filename') or media.get('path')
        size = media.get('size') or 0

        if action == 'file_only':
            episode_file_id = media.get('sonarr_episode_file_id')
            if not episode_file_id:
                files = await self._request("GET", "/episodefile", params={'seriesId': series['id']}) or []
                match = next((f for f in files if f.get('path') == media.get('path')), None)
                if match is None:
                    raise IntegrationError(self.name, f"Episode file not found: {media.get('path')}")
                episode_file_id = match['id']
            await self._request("DELETE", f"/episodefile/{episode_file_id}")
            return DeletionOutcome(self.name, action, f"Deleted episode file: {filename}", size)

        if action == 'unmonitor':
            await self._request("PUT", f"/series/{series['id']}", json={**series, 'monitored': False})
            if delete_files:
                await self._request("DELETE", f"/series/{series['id']}", params={
                    'deleteFiles': True,
                    'addImportExclusion': exclusion,
                })
                return DeletionOutcome(
                    self.name, action, f"Unmonitored and removed series: {series.get('title')}", size
                )
            return DeletionOutcome(self.name, action, f"Unmonitored series: {series.get('title')}", 0)

        if action == 'remove_series':
            await self._request("DELETE", f"/series/{series['id']}", params={
                'deleteFiles': delete_files,
                'addImportExclusion': exclusion,
            })
            return DeletionOutcome(
                self.name, action, f"Removed series: {series.get('title')}",
                size if delete_files else 0
            )

        raise IntegrationError(self.name, f"Unknown deletion strategy: {action}")
