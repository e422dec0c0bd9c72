"""Shared pytest fixtures for testing."""
import os
import tempfile

# Settings are read at import time, so the environment must be in place first
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters-long")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="vp-uploads-"))
os.environ.setdefault("OUTPUT_DIR", tempfile.mkdtemp(prefix="vp-outputs-"))
os.environ.setdefault("PROCESSING_BACKEND", "local")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.models.organization import Organization
from app.models.user import User
from app.models.video import Video
from app.auth.api_key import create_api_key
from app.auth.jwt import create_user_token, get_password_hash
from app.services.processing_queue import get_dispatcher
from app.services.transcoder import TranscodeError, VideoMetadata

TEST_PASSWORD = "CorrectHorse99!"

# bcrypt is slow; hash once for every user the fixtures create
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


class RecordingDispatcher:
    """Stands in for the processing dispatcher and remembers what it was given."""

    def __init__(self):
        self.saturated = False
        self.fail_with = None
        self.dispatched = []

    @property
    def is_saturated(self) -> bool:
        return self.saturated

    def dispatch(self, video_id) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.dispatched.append(str(video_id))


class FakeTranscoder:
    """Writes placeholder files instead of invoking ffmpeg."""

    def __init__(self, duration=120.0, fail_resolutions=(), fail_thumbnail=False, fail_metadata=False):
        self.duration = duration
        self.fail_resolutions = set(fail_resolutions)
        self.fail_thumbnail = fail_thumbnail
        self.fail_metadata = fail_metadata
        self.transcoded = []
        self.hls_requested = False

    @staticmethod
    def _write(path: str, size: int) -> str:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(b"\0" * size)
        return path

    async def extract_thumbnail(self, input_path, output_path, timestamp=None):
        if self.fail_thumbnail:
            raise TranscodeError("ffmpeg failed: could not decode frame")
        return self._write(output_path, 64)

    async def probe(self, input_path):
        if self.fail_metadata:
            raise TranscodeError("ffprobe failed: invalid data")
        return VideoMetadata(duration=self.duration, width=1920, height=1080, video_codec="h264")

    async def transcode(self, input_path, output_path, profile):
        self.transcoded.append(profile.resolution)
        if profile.resolution in self.fail_resolutions:
            raise TranscodeError(f"ffmpeg failed: cannot encode {profile.resolution}")
        return self._write(output_path, 1000 if profile.resolution == "720p" else 2000)

    async def generate_hls(self, input_path, output_dir):
        self.hls_requested = True
        self._write(os.path.join(output_dir, "segment0.ts"), 32)
        return self._write(os.path.join(output_dir, "playlist.m3u8"), 16)


@pytest.fixture(autouse=True)
def storage_dirs(tmp_path, monkeypatch):
    """Point uploads and derived files at a per-test directory."""
    upload_dir = tmp_path / "uploads"
    output_dir = tmp_path / "outputs"
    upload_dir.mkdir()
    output_dir.mkdir()
    monkeypatch.setattr(settings, "upload_dir", str(upload_dir))
    monkeypatch.setattr(settings, "output_dir", str(output_dir))
    return upload_dir, output_dir


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_organization(db):
    """Factory for organizations on a given plan."""
    counter = {"n": 0}

    async def _make(plan="free", status="active", name=None):
        counter["n"] += 1
        organization = Organization(
            name=name or f"Org {counter['n']}",
            email=f"org{counter['n']}-{plan}@example.com",
            plan=plan,
            status=status,
        )
        db.add(organization)
        await db.commit()
        await db.refresh(organization)
        return organization

    return _make


@pytest.fixture
def make_user(db):
    """Factory for users of an organization."""
    counter = {"n": 0}

    async def _make(organization, role="owner", is_active=True):
        counter["n"] += 1
        user = User(
            organization_id=organization.id,
            email=f"user{counter['n']}-{role}@example.com",
            name=f"User {counter['n']}",
            hashed_password=TEST_PASSWORD_HASH,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest.fixture
async def organization(make_organization):
    return await make_organization()


@pytest.fixture
async def owner(make_user, organization):
    return await make_user(organization, role="owner")


@pytest.fixture
def auth_headers(owner):
    return {"Authorization": f"Bearer {create_user_token(owner)}"}


@pytest.fixture
def headers_for():
    """Bearer headers for any user or raw API key."""

    def _headers(user_or_key) -> dict:
        token = user_or_key if isinstance(user_or_key, str) else create_user_token(user_or_key)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def api_key(db, organization):
    """(raw_key, model) for the default organization."""
    return await create_api_key(db, organization.id, "Test Key")


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def client(session_factory, dispatcher):
    """HTTP client bound to the app with the test database and dispatcher."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()


@pytest.fixture
def source_video(tmp_path):
    """Ten kilobytes of not-really-video, enough for range requests."""
    path = tmp_path / "source.mp4"
    path.write_bytes(bytes(range(256)) * 40)
    return path


@pytest.fixture
def backdate(session_factory):
    """Overwrite a video's timestamp columns, e.g. to age it past a cutoff."""

    async def _backdate(video_id, **columns):
        async with session_factory() as session:
            await session.execute(update(Video).where(Video.id == video_id).values(**columns))
            await session.commit()

    return _backdate
