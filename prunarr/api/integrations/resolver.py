import logging
from typing import Any, Mapping

from .base import BaseIntegration
from .filesystem import FilesystemIntegration
from .radarr import RadarrIntegration
from .sonarr import SonarrIntegration

logger = logging.getLogger(__name__)


class IntegrationResolver:
    """Chooses the integration for a media item from the current configuration"""

    def __init__(self, config_service):
        self.config_service = config_service
        self.filesystem = FilesystemIntegration()

    def resolve(self, media: Mapping[str, Any]) -> BaseIntegration:
        config = self.config_service.config
        media_type = media.get('type')

        if media_type == 'show':
            if config.sonarr_configured:
                return SonarrIntegration(config.sonarr_url, config.sonarr_api_key, config.integration_timeout_sec)
            logger.info("Sonarr not configured, falling back to direct file deletion")
        elif media_type == 'movie':
            if config.radarr_configured:
                return RadarrIntegration(config.radarr_url, config.radarr_api_key, config.integration_timeout_sec)
            logger.info("Radarr not configured, falling back to direct file deletion")

        return self.filesystem
