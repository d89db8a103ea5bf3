"""
Shared Test Fixtures for EchoPost

This module provides common fixtures used across all test modules.
Fixtures include mocks for database connections and HTTP responses, fake
collaborators (recorder, transcriber, publisher), media files on disk, and
data factories for drafts.
"""

import pytest
from unittest.mock import MagicMock, patch
from typing import Optional, Dict, Any, List
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.platforms import Platform
from data.models import DraftPost, Content, MediaItem, MediaQuery, DeviceMetadata, Internal


# Minimal file headers that pass the magic-byte checks
M4A_HEADER = b"\x00\x00\x00\x20ftypM4A \x00\x00\x00\x00M4A mp42isom" + b"\x00" * 32
JPEG_HEADER = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 32
PNG_HEADER = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
MP4_HEADER = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00" + b"\x00" * 32


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def mock_db_connection():
    """
    Mock pyodbc database connection and cursor.

    This fixture provides a mock database connection that simulates
    pyodbc behavior without requiring an actual database connection.

    Usage:
        def test_database(mock_db_connection):
            conn, cursor = mock_db_connection
            cursor.fetchall.return_value = [('row1',), ('row2',)]
            # ... test code

    Returns:
        tuple: A tuple of (mock_connection, mock_cursor).
    """
    mock_cursor = MagicMock()
    mock_cursor.description = [('column1',), ('column2',)]
    mock_cursor.fetchall.return_value = []
    mock_cursor.fetchone.return_value = None
    mock_cursor.rowcount = 1

    mock_conn = MagicMock()
    mock_conn.cursor.return_value = mock_cursor
    mock_conn.commit.return_value = None
    mock_conn.rollback.return_value = None
    mock_conn.close.return_value = None

    with patch('pyodbc.connect', return_value=mock_conn):
        yield mock_conn, mock_cursor


# =============================================================================
# HTTP Response Fixtures
# =============================================================================

@pytest.fixture
def mock_http_response():
    """
    Factory fixture for creating mock HTTP responses.

    Usage:
        def test_http_request(mock_http_response):
            response = mock_http_response(status_code=200, json_data={'text': 'hi'})

    Returns:
        callable: A factory function for creating mock responses.
    """
    def _create_response(
        status_code: int = 200,
        text: str = '',
        json_data: Optional[Dict[str, Any]] = None,
    ) -> MagicMock:
        import json

        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.ok = 200 <= status_code < 300

        if text:
            mock_response.text = text
        elif json_data is not None:
            mock_response.text = json.dumps(json_data)
        else:
            mock_response.text = ''

        if json_data is not None:
            mock_response.json.return_value = json_data
        else:
            mock_response.json.side_effect = ValueError("No JSON data")

        return mock_response

    return _create_response


@pytest.fixture
def mock_requests(mock_http_response):
    """
    Mock the requests library for HTTP testing.

    Returns:
        MagicMock: A mock requests module with response factory attached.
    """
    with patch('requests.get') as mock_get, \
         patch('requests.post') as mock_post:

        mock_req = MagicMock()
        mock_req.get = mock_get
        mock_req.post = mock_post
        mock_req.response = mock_http_response

        yield mock_req


# =============================================================================
# Fake Collaborators
# =============================================================================

class FakeRecorder:
    """AudioRecorder that writes a small M4A file and replays scripted levels."""

    def __init__(self, levels: Optional[List[float]] = None, payload: bytes = M4A_HEADER,
                 start_error: Optional[Exception] = None):
        self.levels = list(levels or [])
        self.payload = payload
        self.start_error = start_error
        self.path = None
        self.config = None
        self.start_calls = 0
        self.stop_calls = 0

    def start(self, path, config):
        self.start_calls += 1
        if self.start_error:
            raise self.start_error
        self.path = path
        self.config = config

    def stop(self):
        self.stop_calls += 1
        if self.path and self.payload is not None:
            with open(self.path, "wb") as f:
                f.write(self.payload)
        return self.path

    def get_amplitude(self):
        if self.levels:
            return self.levels.pop(0)
        return -160.0


class FakeEnvironment:
    """RecordingEnvironment with switchable answers."""

    def __init__(self, microphone: bool = True, writable: bool = True):
        self.microphone = microphone
        self.writable = writable

    def has_microphone_permission(self):
        return self.microphone

    def has_writable_scratch_space(self):
        return self.writable


class FakeTranscriber:
    """Transcriber returning a fixed text (or raising a queued error)."""

    def __init__(self, text: str = "post to twitter hello world"):
        self.text = text
        self.errors: List[Exception] = []
        self.calls: List[str] = []

    def transcribe(self, audio_path):
        self.calls.append(audio_path)
        if self.errors:
            raise self.errors.pop(0)
        return self.text


class FakePublisher:
    """PublishAdapter with scripted per-platform outcomes."""

    def __init__(self, outcomes: Optional[Dict[Platform, Any]] = None,
                 authenticated: Optional[Dict[Platform, bool]] = None):
        self.outcomes = dict(outcomes or {})
        self.authenticated = dict(authenticated or {})
        self.calls: List[Platform] = []

    def publish(self, platform, draft):
        self.calls.append(platform)
        outcome = self.outcomes.get(platform, True)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(draft)
        return outcome

    def is_authenticated(self, platform):
        return self.authenticated.get(platform, True)


@pytest.fixture
def fake_recorder():
    """A recorder that hears speech for a few ticks."""
    return FakeRecorder(levels=[-20.0, -25.0, -30.0])


@pytest.fixture
def fake_environment():
    return FakeEnvironment()


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture
def fake_publisher():
    return FakePublisher()


# =============================================================================
# File System Fixtures
# =============================================================================

@pytest.fixture
def media_file_factory(tmp_path):
    """
    Factory for media files with valid headers.

    Usage:
        path = media_file_factory("beach.jpg")
        path = media_file_factory("clip.mp4", subdir="videos")
    """
    headers = {
        ".jpg": JPEG_HEADER,
        ".jpeg": JPEG_HEADER,
        ".png": PNG_HEADER,
        ".mp4": MP4_HEADER,
        ".mov": MP4_HEADER,
    }

    def _create(name: str, subdir: Optional[str] = None, content: Optional[bytes] = None,
                mtime: Optional[float] = None) -> str:
        directory = tmp_path / subdir if subdir else tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        if content is None:
            content = headers.get(os.path.splitext(name)[1].lower(), b"\x00" * 16)
        path.write_bytes(content)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return str(path)

    return _create


@pytest.fixture
def real_png(tmp_path):
    """A real PNG written with Pillow."""
    from PIL import Image

    path = tmp_path / "real.png"
    Image.new("RGB", (40, 20), color=(200, 10, 10)).save(path)
    return str(path)


# =============================================================================
# Data Model Factories
# =============================================================================

@pytest.fixture
def draft_factory():
    """
    Factory fixture for DraftPost objects.

    Usage:
        draft = draft_factory(platforms=[Platform.TWITTER], text="hi")
    """
    def _create(platforms: Optional[List[Platform]] = None,
                text: str = "Sunset at the beach",
                hashtags: Optional[List[str]] = None,
                media: Optional[List[MediaItem]] = None,
                media_query: Optional[MediaQuery] = None,
                link: Optional[str] = None) -> DraftPost:
        return DraftPost(
            platforms=list(platforms) if platforms is not None else [Platform.TWITTER],
            content=Content(
                text=text,
                hashtags=list(hashtags or []),
                link=link,
                media=list(media or []),
            ),
            media_query=media_query,
            internal=Internal(original_transcript=text, ai_generated=True),
        )

    return _create


@pytest.fixture
def media_item_factory():
    """Factory for MediaItem objects pointing at a path."""
    def _create(path: str, mime_type: str = "image/jpeg") -> MediaItem:
        size = os.path.getsize(path) if os.path.exists(path) else 0
        return MediaItem(
            file_uri=path,
            mime_type=mime_type,
            device_metadata=DeviceMetadata(file_size_bytes=size),
        )

    return _create
