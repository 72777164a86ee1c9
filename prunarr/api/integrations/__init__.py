"""Downstream systems that carry out approved deletions"""

from .base import BaseIntegration, DeletionOutcome
from .filesystem import FilesystemIntegration
from .radarr import RadarrIntegration
from .resolver import IntegrationResolver
from .sonarr import SonarrIntegration

__all__ = [
    'BaseIntegration',
    'DeletionOutcome',
    'FilesystemIntegration',
    'IntegrationResolver',
    'RadarrIntegration',
    'SonarrIntegration',
]
