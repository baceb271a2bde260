"""Tests for the ingest step and the media cache."""

from __future__ import annotations

import unittest
from datetime import UTC, datetime

from favmirror.adapters.gelbooru.normalizer import normalize_post
from favmirror.domain.exceptions import PageUnavailableError
from favmirror.domain.records import CHECKPOINT_ID, RecordKind, SyncCheckpointRecord
from favmirror.services.ingest import IngestService
from favmirror.services.media_cache import MediaCache
from tests.conftest import FakeSourceClient, TempRecordStore, make_post


class TestIngestService(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmp = TempRecordStore()
        self.store = self.tmp.store
        self.source = FakeSourceClient()
        self.files = self.tmp.root / "files"
        self.media = MediaCache(self.files, self.source)
        self.ingest = IngestService(self.store, self.media, download_concurrency=2)

    async def asyncTearDown(self) -> None:
        self.tmp.close()

    async def test_new_posts_are_stored_at_version_one_with_files(self):
        result = await self.ingest.ingest([make_post(1), make_post(2)], favorites_count=2)

        assert result.created == 2
        assert result.changed == 2
        item = await self.store.get(RecordKind.MEDIA_ITEM, 1)
        assert item.version == 1
        assert (self.files / "1.jpg").read_bytes() == b"image-bytes"
        assert len(self.source.downloaded) == 2

    async def test_unchanged_posts_are_not_rewritten(self):
        await self.ingest.ingest([make_post(1)])

        result = await self.ingest.ingest([make_post(1)])

        assert result.unchanged == 1
        assert result.changed == 0
        assert (await self.store.get(RecordKind.MEDIA_ITEM, 1)).version == 1

    async def test_changed_post_bumps_version_without_redownload(self):
        await self.ingest.ingest([make_post(1, tags="a")])
        self.source.downloaded.clear()

        result = await self.ingest.ingest([make_post(1, tags="a b")])

        assert result.updated == 1
        item = await self.store.get(RecordKind.MEDIA_ITEM, 1)
        assert item.version == 2
        assert item.tags == ["a", "b"]
        assert self.source.downloaded == []

    async def test_download_failure_still_stores_record(self):
        async def broken_download(url, dest):
            raise PageUnavailableError("download failed", attempts=3)

        self.source.download_file = broken_download  # type: ignore[method-assign]

        result = await self.ingest.ingest([make_post(5)])

        assert result.created == 1
        assert result.downloads_failed == 1
        assert await self.store.get(RecordKind.MEDIA_ITEM, 5) is not None
        assert not (self.files / "5.jpg").exists()

    async def test_checkpoint_uses_fetched_count_and_keeps_full_sync_time(self):
        last_full = datetime(2024, 1, 1, tzinfo=UTC)
        await self.store.upsert(SyncCheckpointRecord(last_full_sync_at=last_full))

        await self.ingest.ingest([make_post(1)], favorites_count=40)

        checkpoint = await self.store.get(RecordKind.CHECKPOINT, CHECKPOINT_ID)
        assert checkpoint.favorites_count == 40
        assert checkpoint.last_full_sync_at == last_full
        assert checkpoint.last_synced_at is not None

    async def test_checkpoint_falls_back_to_local_count(self):
        await self.ingest.ingest([make_post(1), make_post(2), make_post(3)])

        checkpoint = await self.store.get(RecordKind.CHECKPOINT, CHECKPOINT_ID)
        assert checkpoint.favorites_count == 3
        assert checkpoint.last_full_sync_at is None

    async def test_ingest_runs_with_info_logging_enabled(self):
        with self.assertLogs("favmirror", level="INFO") as logs:
            result = await self.ingest.ingest([make_post(1)], correlation_id="cid-1")

        assert result.created == 1
        complete = next(r for r in logs.records if r.getMessage() == "ingest_complete")
        assert complete.items_created == 1
        assert complete.correlation_id == "cid-1"
        assert await self.store.get(RecordKind.CHECKPOINT, CHECKPOINT_ID) is not None


class TestMediaCache(unittest.IsolatedAsyncioTestCase):
    async def test_existing_file_is_not_downloaded(self):
        tmp = TempRecordStore()
        try:
            source = FakeSourceClient()
            cache = MediaCache(tmp.root, source)
            item = normalize_post(make_post(9))
            cache.path_for(item).write_bytes(b"already")

            assert cache.has(item)
            assert await cache.ensure(item) == tmp.root / "9.jpg"
            assert source.downloaded == []
        finally:
            tmp.close()


if __name__ == "__main__":
    unittest.main()
