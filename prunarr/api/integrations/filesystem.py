import logging
from typing import Any, Mapping

import aiofiles.os

from prunarr.exceptions import IntegrationError
from .base import BaseIntegration, DeletionOutcome

logger = logging.getLogger(__name__)


class FilesystemIntegration(BaseIntegration):
    """Removes the media file directly"""

    name = "filesystem"

    async def delete(self, media: Mapping[str, Any], strategy: Mapping[str, Any]) -> DeletionOutcome:
        path = media.get('path')
        if not path:
            raise IntegrationError(self.name, "Media snapshot has no path")

        try:
            stat = await aiofiles.os.stat(path)
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.info(f"File already removed: {path}")
            return DeletionOutcome(self.name, "delete_file", "File already removed", 0)
        except IsADirectoryError:
            raise IntegrationError(self.name, f"Refusing to delete directory: {path}")
        except OSError as e:
            raise IntegrationError(self.name, f"Could not delete {path}: {e}")

        logger.info(f"Deleted file {path} ({stat.st_size} bytes)")
        return DeletionOutcome(
            self.name, "delete_file",
            f"Deleted file directly: {media.get('filename') or path}",
            stat.st_size
        )
