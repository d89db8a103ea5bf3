"""
Tests for the In-Memory Post Store

Tests cover the PostStorage contract: save, update, delete, streaming with
filters, and terminal outcome writes with an append-only error log.
"""

import pytest
import time
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.platforms import Platform
from data.memory_store import InMemoryPostStore
from data.models import PostFilter, PostStatus, ErrorLogEntry
from utils.exceptions import QueryError, DuplicatePost


@pytest.fixture
def store():
    return InMemoryPostStore()


class TestSaveAndStream:
    """Tests for writing and reading drafts."""

    def test_saved_draft_streams_back(self, store, draft_factory):
        """A saved draft is streamed back as a pending record with equal content."""
        draft = draft_factory(platforms=[Platform.BLUESKY], hashtags=["food"])

        assert store.save(draft) == draft.id
        records = store.stream()

        assert len(records) == 1
        assert records[0].draft == draft
        assert records[0].status == PostStatus.PENDING
        assert records[0].retry_count == 0
        assert records[0].error_log == []

    def test_stored_copy_is_detached(self, store, draft_factory):
        """Changing the draft after saving does not change the stored copy."""
        draft = draft_factory(text="original")
        store.save(draft)

        draft.content.text = "changed"

        assert store.stream()[0].draft.content.text == "original"

    def test_newest_first(self, store, draft_factory):
        """Records are ordered by creation time, newest first."""
        first = draft_factory(text="first")
        store.save(first)
        time.sleep(0.01)
        second = draft_factory(text="second")
        store.save(second)

        assert [r.draft.id for r in store.stream()] == [second.id, first.id]

    def test_filters_and_limit(self, store, draft_factory):
        """Filters select by status and platform; the limit caps the result."""
        twitter = draft_factory(platforms=[Platform.TWITTER])
        bluesky = draft_factory(platforms=[Platform.BLUESKY])
        store.save(twitter)
        store.save(bluesky)
        store.record_outcome(bluesky.id, PostStatus.POSTED)

        assert [r.draft.id for r in store.stream(PostFilter(status=PostStatus.POSTED))] == [bluesky.id]
        assert [r.draft.id for r in store.stream(PostFilter(platform=Platform.TWITTER))] == [twitter.id]
        assert len(store.stream(PostFilter(limit=1))) == 1

    def test_update(self, store, draft_factory):
        """update() replaces the draft body."""
        draft = draft_factory(text="before")
        store.save(draft)
        draft.content.text = "after"

        store.update(draft.id, draft)

        assert store.stream()[0].draft.content.text == "after"

    def test_update_unknown(self, store, draft_factory):
        """Updating a missing id raises QueryError."""
        with pytest.raises(QueryError):
            store.update("missing", draft_factory())

    def test_delete(self, store, draft_factory):
        """Deleted drafts disappear; deleting twice is harmless."""
        draft = draft_factory()
        store.save(draft)

        store.delete(draft.id)
        store.delete(draft.id)

        assert store.stream() == []


class TestRecordOutcome:
    """Tests for terminal status writes."""

    def test_posted(self, store, draft_factory):
        """A posted outcome stamps the attempt."""
        draft = draft_factory()
        store.save(draft)

        store.record_outcome(draft.id, PostStatus.POSTED)

        record = store.stream()[0]
        assert record.status == PostStatus.POSTED
        assert record.last_attempt is not None
        assert record.retry_count == 0

    def test_failures_append(self, store, draft_factory):
        """Failed outcomes append to the error log and count retries."""
        draft = draft_factory()
        store.save(draft)

        store.record_outcome(draft.id, PostStatus.FAILED, [ErrorLogEntry(platform="twitter", message="one")])
        store.record_outcome(draft.id, PostStatus.FAILED, [ErrorLogEntry(platform="twitter", message="two")])

        record = store.stream()[0]
        assert [e.message for e in record.error_log] == ["one", "two"]
        assert record.retry_count == 2

    def test_unknown_id(self, store):
        """Recording an outcome for a missing id raises QueryError."""
        with pytest.raises(QueryError):
            store.record_outcome("missing", PostStatus.POSTED)


class TestDuplicateSave:
    """Tests for saving an id that is already stored."""

    def test_duplicate_save_rejected(self, store, draft_factory):
        """A second save of the same id raises DuplicatePost and keeps the history."""
        draft = draft_factory()
        store.save(draft)
        store.record_outcome(draft.id, PostStatus.FAILED, [ErrorLogEntry(platform="twitter", message="down")])

        with pytest.raises(DuplicatePost):
            store.save(draft)

        record = store.stream()[0]
        assert record.status == PostStatus.FAILED
        assert [e.message for e in record.error_log] == ["down"]
        assert record.retry_count == 1

    def test_duplicate_is_a_query_error(self):
        """Callers that handle QueryError also handle duplicates."""
        assert issubclass(DuplicatePost, QueryError)
