"""Local media file cache under the output folder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from favmirror.domain.exceptions import SourceError

if TYPE_CHECKING:
    from favmirror.domain.records import MediaItemRecord
    from favmirror.protocols import SourceClientProtocol

logger = logging.getLogger(__name__)


class MediaCache:
    """Resolves ``<files_dir>/<local_path>`` and fills it on demand."""

    def __init__(self, files_dir: Path, client: SourceClientProtocol) -> None:
        self.files_dir = Path(files_dir)
        self._client = client

    def path_for(self, item: MediaItemRecord) -> Path:
        return self.files_dir / item.local_path

    def has(self, item: MediaItemRecord) -> bool:
        return self.path_for(item).is_file()

    async def ensure(self, item: MediaItemRecord) -> Path | None:
        """Return the cached file, downloading it first if absent.

        Returns None when the item has no file URL or the download fails;
        the failure is logged and the caller decides whether to skip.
        """
        path = self.path_for(item)
        if path.is_file():
            return path
        if not item.file_url:
            logger.warning("media_no_file_url", extra={"item_id": item.id})
            return None
        try:
            await self._client.download_file(item.file_url, path)
        except (SourceError, OSError) as exc:
            logger.warning(
                "media_download_failed",
                extra={"item_id": item.id, "url": item.file_url, "error": str(exc)},
            )
            return None
        logger.debug("media_downloaded", extra={"item_id": item.id, "path": path.name})
        return path
