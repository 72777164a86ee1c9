import logging
from typing import Any, Dict, Mapping

from prunarr.exceptions import IntegrationError
from .base import ArrClient, DeletionOutcome

logger = logging.getLogger(__name__)


class RadarrIntegration(ArrClient):
    """Deletes movies through Radarr"""

    name = "radarr"

    async def _find_movie(self, media: Mapping[str, Any]) -> Dict[str, Any]:
        movies = await self._request("GET", "/movie") or []
        movie = self.find_entry(movies, media, media.get('radarr_id'))
        if movie is None:
            raise IntegrationError(self.name, f"Movie not found for: {media.get('title') or media.get('path')}")
        return movie

    async def delete(self, media: Mapping[str, Any], strategy: Mapping[str, Any]) -> DeletionOutcome:
        movie = await self._find_movie(media)
        action = strategy.get('radarr', 'file_only')
        delete_files = strategy.get('delete_files', True)
        filename = media.get('filename') or media.get('path')
        size = media.get('size') or 0

        if action == 'file_only':
            movie_file = movie.get('movieFile') or {}
            if not movie_file.get('id'):
                raise IntegrationError(self.name, f"Movie file not found: {media.get('path')}")
            await self._request("DELETE", f"/moviefile/{movie_file['id']}")
            return DeletionOutcome(self.name, action, f"Deleted movie file: {filename}", size)

        if action == 'remove_movie':
            await self._request("DELETE", f"/movie/{movie['id']}", params={
                'deleteFiles': delete_files,
                'addImportExclusion': strategy.get('add_import_exclusion', False),
            })
            return DeletionOutcome(
                self.name, action, f"Removed movie: {movie.get('title')}",
                size if delete_files else 0
            )

        raise IntegrationError(self.name, f"Unknown deletion strategy: {action}")
