"""
Tests for Post Coordinator - Draft Lifecycle and Publication

Tests cover adoption, the mutation surface, readiness reasons, platform
formatting, publishing (happy path, partial failure, retry of failed
platforms, timeouts, single-flight), terminal status writes, observers and
serialized concurrent mutation.
"""

import pytest
import threading
import time
from datetime import datetime, timedelta, timezone
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import FakePublisher
from config.platforms import Platform
from data.memory_store import InMemoryPostStore
from data.models import MediaQuery, PostStatus
from services.post_coordinator import PostCoordinator, DraftState
from services.publish_service import PublishService
from utils.exceptions import (
    NoActiveDraft, NotReady, AlreadyInProgress, InvalidSchedule, UnknownPlatform,
    InvalidHashtag, PostingError, QueryError
)


class FlakyStore(InMemoryPostStore):
    """In-memory store whose status writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_outcomes = False
        self.outcome_attempts = 0

    def record_outcome(self, post_id, status, errors=None):
        self.outcome_attempts += 1
        if self.fail_outcomes:
            raise QueryError("database unavailable")
        super().record_outcome(post_id, status, errors)


@pytest.fixture
def store():
    return InMemoryPostStore()


@pytest.fixture
def coordinator(fake_publisher, store):
    return PostCoordinator(fake_publisher, storage=store, status_write_retry_delay=0)


@pytest.fixture
def photo(media_file_factory, media_item_factory):
    return media_item_factory(media_file_factory("lunch.jpg"))


def record_for(store, post_id):
    return next(r for r in store.stream() if r.draft.id == post_id)


def wait_until(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


# =============================================================================
# Adoption Tests
# =============================================================================

class TestAdoption:
    """Tests for installing drafts."""

    def test_initial_state(self, coordinator):
        """A new coordinator has no draft."""
        assert coordinator.state == DraftState.NONE
        assert coordinator.has_active_draft is False

    def test_adopt_installs_copy_and_persists(self, coordinator, store, draft_factory):
        """adopt() installs the draft, saves it and returns a copy."""
        draft = draft_factory()

        adopted = coordinator.adopt(draft)

        assert adopted.id == draft.id
        assert adopted is not draft
        assert coordinator.state == DraftState.READY_TO_PUBLISH
        assert record_for(store, draft.id).status == PostStatus.PENDING

    def test_adopt_replaces_active_draft(self, coordinator, draft_factory):
        """A second adopt() replaces the first draft."""
        coordinator.adopt(draft_factory(text="first"))
        second = coordinator.adopt(draft_factory(text="second"))

        assert coordinator.snapshot().draft.id == second.id

    def test_adopt_document(self, coordinator, draft_factory):
        """adopt() accepts the document form."""
        draft = draft_factory(platforms=[Platform.BLUESKY])

        adopted = coordinator.adopt(draft.to_dict())

        assert adopted.platforms == [Platform.BLUESKY]

    def test_adopt_unknown_platform_document(self, coordinator, draft_factory):
        """A document naming an unknown platform raises UnknownPlatform."""
        document = draft_factory().to_dict()
        document["platforms"] = ["myspace"]

        with pytest.raises(UnknownPlatform):
            coordinator.adopt(document)

    def test_sync_does_not_duplicate(self, coordinator, store, draft_factory):
        """sync_with_existing() updates the stored draft instead of saving again."""
        draft = draft_factory()
        coordinator.adopt(draft)
        draft.content.text = "edited elsewhere"

        coordinator.sync_with_existing(draft)

        assert len(store.stream()) == 1
        assert record_for(store, draft.id).draft.content.text == "edited elsewhere"

    def test_sync_with_stored_draft(self, fake_publisher, store, draft_factory):
        """A draft loaded from storage is synced, not saved a second time."""
        draft = draft_factory()
        store.save(draft)
        coordinator = PostCoordinator(fake_publisher, storage=store)

        coordinator.sync_with_existing(draft)

        assert len(store.stream()) == 1

    def test_adopt_stored_draft_keeps_history(self, fake_publisher, store, draft_factory):
        """Adopting a draft that is already stored keeps its status and error log."""
        failing = FakePublisher(outcomes={Platform.TWITTER: PostingError("rate limited")})
        first = PostCoordinator(failing, storage=store, status_write_retry_delay=0)
        draft = first.adopt(draft_factory())
        first.finalize_and_execute_post()

        second = PostCoordinator(fake_publisher, storage=store)
        second.adopt(store.stream()[0].draft)

        record = record_for(store, draft.id)
        assert len(store.stream()) == 1
        assert record.status == PostStatus.FAILED
        assert [e.message for e in record.error_log] == ["rate limited"]
        assert record.retry_count == 1

    def test_reset(self, coordinator, draft_factory):
        """reset() discards the draft unconditionally."""
        coordinator.adopt(draft_factory())

        coordinator.reset()

        assert coordinator.state == DraftState.NONE
        assert coordinator.snapshot().draft is None


# =============================================================================
# Mutation Tests
# =============================================================================

class TestMutations:
    """Tests for the mutation surface."""

    def test_mutation_without_draft(self, coordinator):
        """Mutations without an active draft raise NoActiveDraft."""
        with pytest.raises(NoActiveDraft):
            coordinator.update_content("hello")

    def test_update_content_preserves_other_fields(self, coordinator, draft_factory, photo):
        """Only the text changes unless other fields are supplied."""
        coordinator.adopt(draft_factory(hashtags=["food"], media=[photo], link="https://example.com"))

        updated = coordinator.update_content("New caption")

        assert updated.content.text == "New caption"
        assert updated.content.hashtags == ["food"]
        assert updated.content.link == "https://example.com"
        assert [m.file_uri for m in updated.content.media] == [photo.file_uri]

    def test_update_content_with_new_hashtags(self, coordinator, draft_factory):
        """Supplied hashtags replace the old ones after normalisation."""
        coordinator.adopt(draft_factory(hashtags=["old"]))

        updated = coordinator.update_content("text", hashtags=["#new", " fresh "])

        assert updated.content.hashtags == ["new", "fresh"]

    def test_update_content_extracts_hashtags(self, coordinator, draft_factory):
        """Inline #tags can be moved from the text into the tag list."""
        coordinator.adopt(draft_factory(hashtags=["travel"]))

        updated = coordinator.update_content("Great day #Beach #travel", extract_hashtags_from_text=True)

        assert updated.content.text == "Great day"
        assert updated.content.hashtags == ["travel", "beach"]

    def test_update_content_persists(self, coordinator, store, draft_factory):
        """Content changes reach the store."""
        draft = coordinator.adopt(draft_factory())

        coordinator.update_content("persisted text")

        assert record_for(store, draft.id).draft.content.text == "persisted text"

    def test_update_hashtags_rejects_invalid(self, coordinator, draft_factory):
        """Empty or spaced tags raise InvalidHashtag and change nothing."""
        coordinator.adopt(draft_factory(hashtags=["keep"]))

        with pytest.raises(InvalidHashtag):
            coordinator.update_hashtags(["ok", "two words"])
        with pytest.raises(InvalidHashtag):
            coordinator.update_hashtags(["#"])

        assert coordinator.snapshot().draft.content.hashtags == ["keep"]

    def test_update_schedule_now_and_future(self, coordinator, draft_factory):
        """'now' and future timestamps are accepted."""
        coordinator.adopt(draft_factory())
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

        assert coordinator.update_schedule(future).options.schedule == future
        assert coordinator.update_schedule("NOW").options.schedule == "now"

    def test_update_schedule_past(self, coordinator, draft_factory):
        """A past timestamp raises InvalidSchedule."""
        coordinator.adopt(draft_factory())

        with pytest.raises(InvalidSchedule):
            coordinator.update_schedule("2020-01-01T00:00:00Z")

        assert coordinator.snapshot().draft.options.schedule == "now"

    def test_update_schedule_garbage(self, coordinator, draft_factory):
        """An unparseable schedule raises InvalidSchedule."""
        coordinator.adopt(draft_factory())

        with pytest.raises(InvalidSchedule):
            coordinator.update_schedule("tomorrow-ish")

    def test_replace_media_resolves_query(self, coordinator, draft_factory, photo):
        """Concrete media clears the media query."""
        coordinator.adopt(draft_factory(media_query=MediaQuery(search_terms=["lunch"])))

        updated = coordinator.replace_media([photo])

        assert updated.media_query is None
        assert updated.is_resolved is True

    def test_replace_media_with_nothing_keeps_query(self, coordinator, draft_factory):
        """An empty replacement leaves the query unresolved."""
        coordinator.adopt(draft_factory(media_query=MediaQuery(search_terms=["lunch"])))

        updated = coordinator.replace_media([])

        assert updated.has_unresolved_media_query is True

    def test_toggle_platform(self, coordinator, draft_factory):
        """toggle_platform() adds and removes platforms, accepting aliases."""
        coordinator.adopt(draft_factory(platforms=[Platform.TWITTER]))

        assert coordinator.toggle_platform("bsky") is True
        assert coordinator.toggle_platform(Platform.TWITTER) is False
        assert coordinator.snapshot().draft.platforms == [Platform.BLUESKY]

    def test_toggle_unknown_platform(self, coordinator, draft_factory):
        """Unknown platforms raise UnknownPlatform and change nothing."""
        coordinator.adopt(draft_factory(platforms=[Platform.TWITTER]))

        with pytest.raises(UnknownPlatform):
            coordinator.toggle_platform("friendster")

        assert coordinator.snapshot().draft.platforms == [Platform.TWITTER]

    def test_snapshot_is_detached(self, coordinator, draft_factory):
        """Changing a snapshot's draft does not affect the coordinator."""
        coordinator.adopt(draft_factory(text="original"))

        snapshot = coordinator.snapshot()
        snapshot.draft.content.text = "tampered"

        assert coordinator.snapshot().draft.content.text == "original"


# =============================================================================
# Readiness Tests
# =============================================================================

class TestReadiness:
    """Tests for execution readiness."""

    def test_no_draft(self, coordinator):
        """Without a draft readiness says so."""
        readiness = coordinator.execution_readiness()

        assert readiness.is_ready is False
        assert readiness.missing_requirements == ("No active draft",)

    def test_no_platforms_never_ready(self, coordinator, draft_factory, photo):
        """An empty platform list is never ready, whatever else is set."""
        coordinator.adopt(draft_factory(platforms=[], media=[photo]))

        readiness = coordinator.execution_readiness()

        assert readiness.is_ready is False
        assert "Select at least one platform" in readiness.missing_requirements

    def test_needs_text_or_media(self, coordinator, draft_factory):
        """Empty text and no media is not ready."""
        coordinator.adopt(draft_factory(text="   "))

        assert "Add text or media to the post" in coordinator.execution_readiness().missing_requirements

    def test_media_without_text_is_ready(self, coordinator, draft_factory, photo):
        """Media alone satisfies the content requirement."""
        coordinator.adopt(draft_factory(text="", media=[photo]))

        assert coordinator.execution_readiness().is_ready is True

    def test_unauthenticated_platform(self, store, draft_factory):
        """Every selected platform must be authenticated."""
        publisher = FakePublisher(authenticated={Platform.TWITTER: False})
        coordinator = PostCoordinator(publisher, storage=store)
        coordinator.adopt(draft_factory(platforms=[Platform.TWITTER, Platform.BLUESKY]))

        readiness = coordinator.execution_readiness()

        assert readiness.missing_requirements == ("Connect your Twitter account",)

    def test_auth_is_checked_fresh(self, store, draft_factory):
        """Readiness is recomputed on every call."""
        publisher = FakePublisher(authenticated={Platform.TWITTER: False})
        coordinator = PostCoordinator(publisher, storage=store)
        coordinator.adopt(draft_factory())
        assert coordinator.execution_readiness().is_ready is False

        publisher.authenticated[Platform.TWITTER] = True

        assert coordinator.execution_readiness().is_ready is True

    def test_unresolved_media_query(self, coordinator, draft_factory):
        """An unresolved media query blocks publishing."""
        coordinator.adopt(draft_factory(media_query=MediaQuery(search_terms=["lunch"])))

        assert coordinator.execution_readiness().missing_requirements == ("Select media for this post",)
        assert coordinator.state == DraftState.DRAFTING

    def test_manual_share_platform(self, store, draft_factory, photo):
        """Platforms EchoPost cannot post to are reported as manual-share only."""
        coordinator = PostCoordinator(PublishService(), storage=store)
        coordinator.adopt(draft_factory(platforms=[Platform.INSTAGRAM], media=[photo]))

        assert coordinator.execution_readiness().missing_requirements == (
            "Instagram can only be shared manually",
        )

    def test_media_required_platform(self, coordinator, draft_factory):
        """Platforms that need media report it when none is attached."""
        coordinator.adopt(draft_factory(platforms=[Platform.INSTAGRAM, Platform.TWITTER]))

        assert coordinator.execution_readiness().missing_requirements == ("Media required for Instagram",)


# =============================================================================
# Formatting Tests
# =============================================================================

class TestFormatting:
    """Tests for platform-formatted content."""

    def test_twitter_inline_hashtags(self, coordinator, draft_factory):
        """Twitter gets at most three inline tags."""
        coordinator.adopt(draft_factory(text="Lunch time", hashtags=["a", "b", "c", "d"]))

        assert coordinator.get_formatted_post_content("twitter") == "Lunch time #a #b #c"

    def test_block_hashtags(self, coordinator, draft_factory):
        """Other platforms get a hashtag block after a blank line."""
        coordinator.adopt(draft_factory(text="Lunch time", hashtags=["food"]))

        assert coordinator.get_formatted_post_content(Platform.INSTAGRAM) == "Lunch time\n\n#food"

    def test_unknown_platform(self, coordinator, draft_factory):
        """Formatting for an unknown platform raises UnknownPlatform."""
        coordinator.adopt(draft_factory())

        with pytest.raises(UnknownPlatform):
            coordinator.get_formatted_post_content("orkut")


# =============================================================================
# Publishing Tests
# =============================================================================

class TestPublishing:
    """Tests for finalize_and_execute_post."""

    def test_happy_path_instagram(self, fake_publisher, coordinator, store, draft_factory, photo):
        """Resolved Instagram draft publishes, is marked posted and resets."""
        draft = coordinator.adopt(draft_factory(
            platforms=[Platform.INSTAGRAM],
            text="My lunch",
            media_query=MediaQuery(search_terms=["lunch"]),
        ))
        assert coordinator.execution_readiness().is_ready is False

        coordinator.replace_media([photo])
        assert coordinator.execution_readiness().is_ready is True

        results = coordinator.finalize_and_execute_post()

        assert results == {Platform.INSTAGRAM: True}
        assert coordinator.state == DraftState.NONE
        assert fake_publisher.calls == [Platform.INSTAGRAM]
        assert record_for(store, draft.id).status == PostStatus.POSTED

    def test_not_ready_has_no_side_effects(self, fake_publisher, coordinator, store, draft_factory):
        """A draft that is not ready raises NotReady and publishes nothing."""
        draft = coordinator.adopt(draft_factory(platforms=[]))

        with pytest.raises(NotReady) as exc_info:
            coordinator.finalize_and_execute_post()

        assert "Select at least one platform" in exc_info.value.missing_requirements
        assert fake_publisher.calls == []
        assert record_for(store, draft.id).status == PostStatus.PENDING

    def test_partial_failure(self, store, draft_factory):
        """One failing platform does not stop the other; the draft stays active."""
        publisher = FakePublisher(outcomes={Platform.BLUESKY: PostingError("server said no")})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        draft = coordinator.adopt(draft_factory(platforms=[Platform.TWITTER, Platform.BLUESKY]))

        results = coordinator.finalize_and_execute_post()

        assert results == {Platform.TWITTER: True, Platform.BLUESKY: False}
        assert coordinator.state == DraftState.PARTIALLY_FAILED
        assert coordinator.snapshot().draft.id == draft.id

        record = record_for(store, draft.id)
        assert record.status == PostStatus.FAILED
        assert len(record.error_log) == 1
        assert record.error_log[0].platform == "bluesky"
        assert record.error_log[0].message == "server said no"
        assert record.error_log[0].timestamp is not None

    def test_false_result_counts_as_failure(self, store, draft_factory):
        """An adapter returning False is a failure with a message."""
        publisher = FakePublisher(outcomes={Platform.TWITTER: False})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        coordinator.adopt(draft_factory())

        results = coordinator.finalize_and_execute_post()

        assert results == {Platform.TWITTER: False}
        assert coordinator.snapshot().error_log[0].message == "Twitter rejected the post"

    def test_retry_only_failed_platforms(self, store, draft_factory):
        """A retry targets only the failed platform and appends to the error log."""
        publisher = FakePublisher(outcomes={Platform.BLUESKY: PostingError("down")})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        draft = coordinator.adopt(draft_factory(platforms=[Platform.TWITTER, Platform.BLUESKY]))
        coordinator.finalize_and_execute_post()

        publisher.outcomes[Platform.BLUESKY] = PostingError("still down")
        coordinator.finalize_and_execute_post()

        assert publisher.calls.count(Platform.TWITTER) == 1
        assert publisher.calls.count(Platform.BLUESKY) == 2
        record = record_for(store, draft.id)
        assert [e.message for e in record.error_log] == ["down", "still down"]
        assert record.draft.internal.retry_count == 1

        publisher.outcomes[Platform.BLUESKY] = True
        results = coordinator.finalize_and_execute_post()

        assert results == {Platform.TWITTER: True, Platform.BLUESKY: True}
        assert coordinator.state == DraftState.NONE
        assert record_for(store, draft.id).status == PostStatus.POSTED

    def test_stale_media_blocks_publish(self, fake_publisher, coordinator, draft_factory,
                                        media_file_factory, media_item_factory):
        """Media deleted after selection raises NotReady before any publish."""
        path = media_file_factory("gone.jpg")
        coordinator.adopt(draft_factory(media=[media_item_factory(path)]))
        os.remove(path)

        with pytest.raises(NotReady) as exc_info:
            coordinator.finalize_and_execute_post()

        assert exc_info.value.missing_requirements == [f"Media file is no longer available: {path}"]
        assert fake_publisher.calls == []

    def test_timeout_marks_platform_failed(self, store, draft_factory):
        """A platform still running at the deadline counts as failed."""
        def slow(draft):
            time.sleep(1.0)
            return True

        publisher = FakePublisher(outcomes={Platform.BLUESKY: slow})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        coordinator.adopt(draft_factory(platforms=[Platform.TWITTER, Platform.BLUESKY]))

        results = coordinator.finalize_and_execute_post(timeout=0.1)

        assert results == {Platform.TWITTER: True, Platform.BLUESKY: False}
        assert "Timed out" in coordinator.snapshot().error_log[0].message

    def test_timed_out_platform_not_published_twice(self, store, draft_factory):
        """A platform whose call outlived the timeout is not retried until it returns; a late success counts."""
        release = threading.Event()

        def slow(draft):
            release.wait(5)
            return True

        publisher = FakePublisher(outcomes={Platform.TWITTER: slow})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        draft = coordinator.adopt(draft_factory(platforms=[Platform.TWITTER]))

        assert coordinator.finalize_and_execute_post(timeout=0.1) == {Platform.TWITTER: False}
        assert coordinator.in_flight_platforms == [Platform.TWITTER]

        with pytest.raises(AlreadyInProgress, match="Twitter"):
            coordinator.finalize_and_execute_post(timeout=0.1)

        release.set()
        assert wait_until(lambda: coordinator.state == DraftState.NONE)

        assert publisher.calls == [Platform.TWITTER]
        assert coordinator.in_flight_platforms == []
        record = record_for(store, draft.id)
        assert record.status == PostStatus.POSTED
        assert [e.platform for e in record.error_log] == ["twitter"]

    def test_late_failure_allows_retry(self, store, draft_factory):
        """Once a timed-out call fails, the platform can be attempted again."""
        release = threading.Event()
        outcomes = iter([False, True])

        def slow_then_ok(draft):
            ok = next(outcomes)
            if not ok:
                release.wait(5)
            return ok

        publisher = FakePublisher(outcomes={Platform.TWITTER: slow_then_ok})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        coordinator.adopt(draft_factory(platforms=[Platform.TWITTER]))
        coordinator.finalize_and_execute_post(timeout=0.1)

        release.set()
        assert wait_until(lambda: coordinator.in_flight_platforms == [])
        assert coordinator.state == DraftState.PARTIALLY_FAILED

        assert coordinator.finalize_and_execute_post() == {Platform.TWITTER: True}
        assert publisher.calls == [Platform.TWITTER, Platform.TWITTER]

    def test_late_success_for_discarded_draft_is_stored(self, store, draft_factory):
        """A new draft is not blocked by an old call, and the old call's success still reaches the store."""
        release = threading.Event()

        def slow_for_first(draft):
            if draft.content.text == "first":
                release.wait(5)
            return True

        publisher = FakePublisher(outcomes={Platform.TWITTER: slow_for_first})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        first = coordinator.adopt(draft_factory(text="first"))
        coordinator.finalize_and_execute_post(timeout=0.1)

        second = coordinator.adopt(draft_factory(text="second"))
        assert coordinator.in_flight_platforms == []
        assert coordinator.finalize_and_execute_post() == {Platform.TWITTER: True}

        release.set()
        assert wait_until(lambda: record_for(store, first.id).status == PostStatus.POSTED)
        assert record_for(store, second.id).status == PostStatus.POSTED

    def test_concurrent_finalize_single_flight(self, store, draft_factory):
        """Two concurrent calls publish once per platform; the second is refused."""
        entered = threading.Event()
        release = threading.Event()

        def blocking(draft):
            entered.set()
            release.wait(5)
            return True

        publisher = FakePublisher(outcomes={Platform.TWITTER: blocking})
        coordinator = PostCoordinator(publisher, storage=store, status_write_retry_delay=0)
        coordinator.adopt(draft_factory(platforms=[Platform.TWITTER, Platform.BLUESKY]))

        results = []
        worker = threading.Thread(target=lambda: results.append(coordinator.finalize_and_execute_post()))
        worker.start()
        assert entered.wait(5)
        assert coordinator.state == DraftState.PUBLISHING

        with pytest.raises(AlreadyInProgress):
            coordinator.finalize_and_execute_post()
        with pytest.raises(AlreadyInProgress):
            coordinator.update_content("changed mid-flight")

        release.set()
        worker.join(5)

        assert publisher.calls.count(Platform.TWITTER) == 1
        assert publisher.calls.count(Platform.BLUESKY) == 1
        assert results == [{Platform.TWITTER: True, Platform.BLUESKY: True}]

    def test_publish_without_storage(self, fake_publisher, draft_factory):
        """The coordinator works without a durable store."""
        coordinator = PostCoordinator(fake_publisher)
        coordinator.adopt(draft_factory())

        assert coordinator.finalize_and_execute_post() == {Platform.TWITTER: True}


# =============================================================================
# Status Write Tests
# =============================================================================

class TestStatusWrites:
    """Tests for best-effort persistence and the terminal status write."""

    def test_status_write_retried_then_parked(self, fake_publisher, draft_factory):
        """A failing status write is retried, then parked for a later flush."""
        store = FlakyStore()
        coordinator = PostCoordinator(fake_publisher, storage=store,
                                      status_write_attempts=3, status_write_retry_delay=0)
        draft = coordinator.adopt(draft_factory())
        store.fail_outcomes = True

        results = coordinator.finalize_and_execute_post()

        assert results == {Platform.TWITTER: True}
        assert store.outcome_attempts == 3
        assert coordinator.pending_status_writes == 1

        assert coordinator.flush_pending_status() is False
        store.fail_outcomes = False
        assert coordinator.flush_pending_status() is True
        assert coordinator.pending_status_writes == 0
        assert record_for(store, draft.id).status == PostStatus.POSTED

    def test_failed_save_is_retried(self, fake_publisher, draft_factory):
        """A draft whose first save failed is saved on the next change."""
        class FlakySaveStore(InMemoryPostStore):
            def __init__(self):
                super().__init__()
                self.down = True

            def save(self, draft):
                if self.down:
                    raise QueryError("offline")
                return super().save(draft)

        store = FlakySaveStore()
        coordinator = PostCoordinator(fake_publisher, storage=store)
        draft = coordinator.adopt(draft_factory())
        store.down = False

        coordinator.update_content("saved now")

        assert record_for(store, draft.id).draft.content.text == "saved now"

    def test_storage_failure_does_not_block_drafting(self, fake_publisher, draft_factory):
        """An unreachable store is logged and the in-memory flow continues."""
        class DownStore(InMemoryPostStore):
            def save(self, draft):
                raise QueryError("offline")

        coordinator = PostCoordinator(fake_publisher, storage=DownStore())

        coordinator.adopt(draft_factory())
        coordinator.update_content("still works")

        assert coordinator.snapshot().draft.content.text == "still works"


# =============================================================================
# Observer Tests
# =============================================================================

class TestObservers:
    """Tests for subscribe/unsubscribe."""

    def test_snapshots_in_mutation_order(self, coordinator, draft_factory):
        """Observers see every change, in order, through the publish cycle."""
        states = []
        coordinator.subscribe(lambda snapshot: states.append(snapshot.state))

        coordinator.adopt(draft_factory())
        coordinator.finalize_and_execute_post()

        assert states == [
            DraftState.READY_TO_PUBLISH,
            DraftState.PUBLISHING,
            DraftState.PUBLISHED,
            DraftState.NONE,
        ]

    def test_unsubscribe(self, coordinator, draft_factory):
        """An unsubscribed observer is no longer called."""
        calls = []
        callback = coordinator.subscribe(lambda snapshot: calls.append(snapshot))

        assert coordinator.unsubscribe(callback) is True
        coordinator.adopt(draft_factory())

        assert calls == []
        assert coordinator.unsubscribe(callback) is False

    def test_failing_observer_is_isolated(self, coordinator, draft_factory):
        """An observer that raises does not break the mutation."""
        def broken(snapshot):
            raise RuntimeError("observer bug")

        coordinator.subscribe(broken)

        coordinator.adopt(draft_factory(text="fine"))

        assert coordinator.snapshot().draft.content.text == "fine"


# =============================================================================
# Concurrency Tests
# =============================================================================

class TestConcurrentMutation:
    """Tests for serialized mutation from several threads."""

    def test_concurrent_hashtag_updates_stay_consistent(self, coordinator, draft_factory):
        """Concurrent replacements leave exactly one writer's complete list."""
        coordinator.adopt(draft_factory())
        lists = [[f"tag{i}a", f"tag{i}b", f"tag{i}c"] for i in range(20)]

        threads = [threading.Thread(target=coordinator.update_hashtags, args=(tags,)) for tags in lists]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert coordinator.snapshot().draft.content.hashtags in lists

    def test_concurrent_toggles_are_not_lost(self, coordinator, draft_factory):
        """Each toggle is applied exactly once."""
        coordinator.adopt(draft_factory(platforms=[]))
        platforms = [Platform.FACEBOOK, Platform.TWITTER, Platform.BLUESKY, Platform.TIKTOK]

        threads = [threading.Thread(target=coordinator.toggle_platform, args=(p,)) for p in platforms]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert set(coordinator.snapshot().draft.platforms) == set(platforms)

    def test_has_active_draft_reads_under_lock(self, coordinator, draft_factory):
        """has_active_draft waits for an in-progress mutation to finish."""
        coordinator.adopt(draft_factory())
        answers = []

        with coordinator._lock:
            reader = threading.Thread(target=lambda: answers.append(coordinator.has_active_draft))
            reader.start()
            reader.join(0.2)
            assert answers == []
        reader.join(5)

        assert answers == [True]
