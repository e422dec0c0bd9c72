"""Tests for video persistence and the status state machine."""
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from app.models.transcoded_video import TranscodedVideo
from app.models.video import VideoStatus
from app.services.video_store import InvalidStatusTransition, PipelineVideoStore, VideoRepository
from app.utils.error_handling import NotFoundError


async def _create(repo: VideoRepository, name="clip.mp4", size=1000):
    return await repo.create(
        original_filename=name,
        storage_path=f"/tmp/{name}",
        byte_size=size,
        mime_type="video/mp4",
    )


class TestVideoRepository:
    """Test cases for tenant-scoped access."""

    async def test_create_starts_pending(self, db, organization):
        video = await _create(VideoRepository(db, organization.id))

        assert video.status == VideoStatus.PENDING
        assert video.organization_id == organization.id
        assert video.file_size == 1000
        assert video.transcoded_videos == []

    async def test_list_is_newest_first(self, db, organization):
        repo = VideoRepository(db, organization.id)
        older = await _create(repo, "a.mp4")
        newer = await _create(repo, "b.mp4")
        older.created_at = datetime.utcnow() - timedelta(hours=1)
        await db.commit()

        videos = await repo.find_all()

        assert [v.id for v in videos] == [newer.id, older.id]

    async def test_other_organization_is_invisible(self, db, make_organization):
        """Test one tenant never sees another tenant's videos."""
        first = await make_organization()
        second = await make_organization()
        video = await _create(VideoRepository(db, first.id))
        other_repo = VideoRepository(db, second.id)

        assert await other_repo.find_by_id(video.id) is None
        assert await other_repo.find_all() == []
        with pytest.raises(NotFoundError):
            await other_repo.get(video.id)

    async def test_malformed_id_is_not_found(self, db, organization):
        repo = VideoRepository(db, organization.id)

        assert await repo.find_by_id("not-a-uuid") is None

    async def test_delete_cascade_returns_all_bytes(self, db, organization):
        """Test deletion removes variants and reports original plus variant bytes."""
        repo = VideoRepository(db, organization.id)
        store = PipelineVideoStore(db)
        video = await _create(repo, size=1000)
        await store.upsert_transcoded_variant(video.id, "720p", file_path="/tmp/720p.mp4", file_size=300)
        await store.upsert_transcoded_variant(video.id, "1080p", file_path="/tmp/1080p.mp4", file_size=700)

        released = await repo.delete_cascade(await repo.get(video.id))

        assert released == 2000
        assert await repo.find_by_id(video.id) is None
        remaining = (await db.execute(select(func.count(TranscodedVideo.id)))).scalar()
        assert remaining == 0

    async def test_delete_refuses_foreign_video(self, db, make_organization):
        first = await make_organization()
        second = await make_organization()
        video = await _create(VideoRepository(db, first.id))

        with pytest.raises(NotFoundError):
            await VideoRepository(db, second.id).delete_cascade(video)


class TestPipelineVideoStore:
    """Test cases for status transitions and derived data."""

    async def test_forward_path(self, db, organization):
        video = await _create(VideoRepository(db, organization.id))
        store = PipelineVideoStore(db)

        for status in (VideoStatus.THUMBNAILING, VideoStatus.PROBING, VideoStatus.TRANSCODING):
            await store.transition(video.id, status)
        done = await store.transition(video.id, VideoStatus.COMPLETED)

        assert done.status == VideoStatus.COMPLETED
        assert done.processing_started_at is not None
        assert done.completed_at is not None

    async def test_skipping_a_step_is_rejected(self, db, organization):
        video = await _create(VideoRepository(db, organization.id))
        store = PipelineVideoStore(db)

        with pytest.raises(InvalidStatusTransition):
            await store.transition(video.id, VideoStatus.TRANSCODING)

    async def test_terminal_states_are_final(self, db, organization):
        """Test nothing leaves completed or failed."""
        video = await _create(VideoRepository(db, organization.id))
        store = PipelineVideoStore(db)
        await store.transition(video.id, VideoStatus.FAILED, "boom")

        with pytest.raises(InvalidStatusTransition):
            await store.transition(video.id, VideoStatus.PENDING)
        with pytest.raises(InvalidStatusTransition):
            await store.update_status(video.id, VideoStatus.THUMBNAILING)

        video = await store.get(video.id)
        assert video.status == VideoStatus.FAILED
        assert video.error_message == "boom"

    async def test_streaming_info_keeps_status(self, db, organization):
        video = await _create(VideoRepository(db, organization.id))
        store = PipelineVideoStore(db)

        updated = await store.update_streaming_info(
            video.id,
            hls_path="/tmp/hls/playlist.m3u8",
            thumbnail_path="/tmp/thumb.jpg",
            duration=12.5,
        )

        assert updated.status == VideoStatus.PENDING
        assert updated.hls_playlist_path == "/tmp/hls/playlist.m3u8"
        assert updated.thumbnail_path == "/tmp/thumb.jpg"
        assert updated.duration == 12.5

    async def test_variant_upsert_is_unique_per_resolution(self, db, organization):
        video = await _create(VideoRepository(db, organization.id))
        store = PipelineVideoStore(db)

        first = await store.upsert_transcoded_variant(video.id, "720p", file_path="/tmp/720p.mp4", status="processing")
        second = await store.upsert_transcoded_variant(video.id, "720p", status="completed", file_size=42)

        assert first.id == second.id
        assert second.status == "completed"
        assert second.file_path == "/tmp/720p.mp4"

    async def test_missing_video(self, db):
        store = PipelineVideoStore(db)

        assert await store.get(uuid.uuid4()) is None
        with pytest.raises(NotFoundError):
            await store.transition(uuid.uuid4(), VideoStatus.FAILED)

    async def test_find_stale(self, db, organization):
        repo = VideoRepository(db, organization.id)
        store = PipelineVideoStore(db)
        stuck = await _create(repo, "stuck.mp4")
        fresh = await _create(repo, "fresh.mp4")
        await _create(repo, "waiting.mp4")
        await store.transition(stuck.id, VideoStatus.THUMBNAILING)
        await store.transition(fresh.id, VideoStatus.THUMBNAILING)
        stuck = await store.get(stuck.id)
        stuck.processing_started_at = datetime.utcnow() - timedelta(hours=5)
        await db.commit()

        stale = await store.find_stale(datetime.utcnow() - timedelta(hours=3))

        assert [v.id for v in stale] == [stuck.id]

    async def test_find_stale_includes_abandoned_pending(self, db, organization, backdate):
        """Test a pending video counts as stale by its creation time."""
        repo = VideoRepository(db, organization.id)
        store = PipelineVideoStore(db)
        abandoned = await _create(repo, "abandoned.mp4")
        await _create(repo, "waiting.mp4")
        await backdate(abandoned.id, created_at=datetime.utcnow() - timedelta(hours=5))

        stale = await store.find_stale(datetime.utcnow() - timedelta(hours=3))

        assert [v.id for v in stale] == [abandoned.id]

    async def test_find_pending_oldest_first(self, db, organization, backdate):
        repo = VideoRepository(db, organization.id)
        store = PipelineVideoStore(db)
        newer = await _create(repo, "newer.mp4")
        older = await _create(repo, "older.mp4")
        started = await _create(repo, "started.mp4")
        await store.transition(started.id, VideoStatus.THUMBNAILING)
        await backdate(older.id, created_at=datetime.utcnow() - timedelta(minutes=10))

        pending = await store.find_pending()

        assert [v.id for v in pending] == [older.id, newer.id]
        assert [v.id for v in await store.find_pending(limit=1)] == [older.id]
