"""
Post Coordinator Module

The single owner of the in-progress draft post. Every edit goes through the
coordinator, which serializes mutations under one lock, notifies
subscribers with immutable snapshots in mutation order, computes execution
readiness on demand, and drives the at-most-once, per-platform publish.

Draft lifecycle:

    none -> drafting -> ready_to_publish -> publishing -> published | partially_failed

A successful publish resets to none. A partial failure keeps the draft so
the next attempt only targets the platforms that have not succeeded yet.
"""

import copy
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Callable, Union, Tuple, Set

from config import settings
from config.platforms import Platform, capabilities_for, media_required_platforms
from data.models import DraftPost, MediaItem, PostStatus, ErrorLogEntry
from data.protocols import PostStorage
from services.content_formatter import format_post_content
from services.media_metadata import check_file_integrity
from services.protocols import PublishAdapter
from utils.exceptions import (
    DatabaseError, DuplicatePost, NoActiveDraft, NotReady, AlreadyInProgress,
    InvalidSchedule, UnknownPlatform, InvalidHashtag
)
from utils.helpers import (
    retry, utc_now, parse_iso_datetime, is_in_past, extract_hashtags,
    remove_hashtags, normalize_hashtag, path_from_uri
)
from utils.logger import get_logger

logger = get_logger(__name__)


class DraftState(str, Enum):
    NONE = "none"
    DRAFTING = "drafting"
    READY_TO_PUBLISH = "ready_to_publish"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    PARTIALLY_FAILED = "partially_failed"


@dataclass(frozen=True)
class ExecutionReadiness:
    is_ready: bool
    missing_requirements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CoordinatorSnapshot:
    """Immutable view handed to observers. The draft is a private deep copy."""
    state: DraftState
    draft: Optional[DraftPost]
    last_results: Dict[Platform, bool] = field(default_factory=dict)
    error_log: Tuple[ErrorLogEntry, ...] = ()


@dataclass
class PendingStatusWrite:
    post_id: str
    status: PostStatus
    errors: List[ErrorLogEntry]


@dataclass
class LateAttempt:
    """A publish attempt with adapter calls still running after its timeout."""
    post_id: str
    token: int
    platforms: Set[Platform]
    succeeded: Set[Platform]


def validate_media_uri(file_uri: str) -> bool:
    path = path_from_uri(file_uri)
    return bool(path) and check_file_integrity(path)


class PostCoordinator:
    """Sole mutator of the draft post and driver of publication."""

    def __init__(self,
                 publisher: PublishAdapter,
                 storage: Optional[PostStorage] = None,
                 media_validator: Callable[[str], bool] = validate_media_uri,
                 publish_timeout: Optional[float] = settings.PUBLISH_TIMEOUT_SECONDS,
                 status_write_attempts: int = settings.STATUS_WRITE_ATTEMPTS,
                 status_write_retry_delay: float = settings.STATUS_WRITE_RETRY_DELAY):
        """
        Initialize the coordinator.

        Args:
            publisher: Publishes to a platform and answers auth checks.
            storage: Durable store (None keeps everything in memory).
            media_validator: Live validity check for a media reference.
            publish_timeout: Overall seconds to wait for platform attempts
                (None waits for every adapter to return).
            status_write_attempts: Attempts for the terminal status write.
            status_write_retry_delay: Initial delay between those attempts.
        """
        self.publisher = publisher
        self.storage = storage
        self.media_validator = media_validator
        self.publish_timeout = publish_timeout
        self.status_write_attempts = status_write_attempts
        self.status_write_retry_delay = status_write_retry_delay

        self._lock = threading.RLock()
        self._subscribers: List[Callable[[CoordinatorSnapshot], None]] = []
        self._draft: Optional[DraftPost] = None
        self._draft_token = 0
        self._publishing = False
        self._published = False
        self._partially_failed = False
        self._succeeded: Set[Platform] = set()
        self._attempts = 0
        self._last_results: Dict[Platform, bool] = {}
        self._error_log: List[ErrorLogEntry] = []
        self._persisted_ids: Set[str] = set()
        self._pending_status: List[PendingStatusWrite] = []
        # Adapter calls that outlived a publish timeout, keyed by draft token
        self._in_flight: Dict[Tuple[int, Platform], Future] = {}

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def state(self) -> DraftState:
        with self._lock:
            return self._state_locked()

    @property
    def has_active_draft(self) -> bool:
        with self._lock:
            return self._draft is not None

    @property
    def in_flight_platforms(self) -> List[Platform]:
        """Platforms of the active draft whose timed-out publish call is still running."""
        with self._lock:
            return [p for token, p in self._in_flight if token == self._draft_token]

    @property
    def pending_status_writes(self) -> int:
        with self._lock:
            return len(self._pending_status)

    def snapshot(self) -> CoordinatorSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def subscribe(self, callback: Callable[[CoordinatorSnapshot], None]) -> Callable[[CoordinatorSnapshot], None]:
        """
        Register an observer.

        The callback runs after every change, in mutation order, while the
        coordinator lock is held; it may read the coordinator but should not
        block.
        """
        with self._lock:
            self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Callable[[CoordinatorSnapshot], None]) -> bool:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
                return True
            return False

    # =========================================================================
    # Installing a draft
    # =========================================================================

    def adopt(self, raw_draft: Union[DraftPost, Dict[str, Any]]) -> DraftPost:
        """
        Install a new draft as the active one, replacing any other.

        Args:
            raw_draft: A DraftPost or its document form.

        Returns:
            DraftPost: A copy of the installed draft.

        Raises:
            UnknownPlatform: If the document names an unsupported platform.
            AlreadyInProgress: If a publish is in flight.
        """
        draft = self._coerce(raw_draft)
        with self._lock:
            self._ensure_not_publishing()
            self._install_locked(draft, keep_progress=False)
            logger.info(f"Adopted draft {draft.id} for {', '.join(p.value for p in draft.platforms) or 'no platforms'}")
            self._persist_locked()
            self._notify_locked()
            return copy.deepcopy(self._draft)

    def sync_with_existing(self, post: Union[DraftPost, Dict[str, Any]]) -> DraftPost:
        """
        Install an already-known draft without creating a duplicate record.

        Re-syncing the active draft keeps its publish progress (platforms
        that already succeeded are not attempted again).
        """
        draft = self._coerce(post)
        with self._lock:
            self._ensure_not_publishing()
            same = self._draft is not None and self._draft.id == draft.id
            self._persisted_ids.add(draft.id)
            self._install_locked(draft, keep_progress=same)
            logger.info(f"Synced with existing draft {draft.id}")
            self._persist_locked()
            self._notify_locked()
            return copy.deepcopy(self._draft)

    def reset(self) -> None:
        """Discard the active draft unconditionally."""
        with self._lock:
            had_draft = self._draft is not None
            self._reset_locked()
            if had_draft:
                logger.info("Post coordinator reset")
            self._notify_locked()

    # =========================================================================
    # Mutations
    # =========================================================================

    def update_content(self, text: str,
                       hashtags: Optional[List[str]] = None,
                       mentions: Optional[List[str]] = None,
                       link: Optional[str] = None,
                       media: Optional[List[MediaItem]] = None,
                       extract_hashtags_from_text: bool = False) -> DraftPost:
        """
        Replace the draft text, keeping the other content fields unless new
        values are supplied.

        Args:
            text: The new text.
            hashtags: Replacement hashtags (validated like update_hashtags).
            mentions: Replacement mentions.
            link: Replacement link.
            media: Replacement media (same semantics as replace_media).
            extract_hashtags_from_text: Move inline #tags from the text into
                the hashtag list.

        Raises:
            NoActiveDraft: If no draft is active.
            InvalidHashtag: If a supplied hashtag is unusable.
        """
        new_hashtags = self._normalize_hashtags(hashtags) if hashtags is not None else None

        with self._lock:
            draft = self._require_draft()
            tags = list(new_hashtags) if new_hashtags is not None else list(draft.content.hashtags)
            if extract_hashtags_from_text:
                for tag in extract_hashtags(text):
                    if tag not in tags:
                        tags.append(tag)
                text = remove_hashtags(text)

            draft.content.text = text
            draft.content.hashtags = tags
            if mentions is not None:
                draft.content.mentions = list(mentions)
            if link is not None:
                draft.content.link = link or None
            if media is not None:
                self._swap_media_locked(draft, media)
            return self._commit_locked("content updated")

    def update_hashtags(self, hashtags: List[str]) -> DraftPost:
        """
        Replace the hashtag list.

        Tags are trimmed and a leading '#' is stripped; empty tags and tags
        containing whitespace are rejected.

        Raises:
            InvalidHashtag: If any tag is unusable (nothing is changed).
        """
        tags = self._normalize_hashtags(hashtags)
        with self._lock:
            draft = self._require_draft()
            draft.content.hashtags = tags
            return self._commit_locked("hashtags updated")

    def update_schedule(self, schedule: str) -> DraftPost:
        """
        Set the schedule to "now" or a future ISO-8601 timestamp.

        Raises:
            InvalidSchedule: If the value is not parseable or lies in the past.
        """
        value = (schedule or "").strip()
        if value.lower() == "now":
            value = "now"
        else:
            try:
                moment = parse_iso_datetime(value)
            except ValueError:
                raise InvalidSchedule(f"Schedule must be 'now' or an ISO-8601 timestamp, got {schedule!r}")
            if is_in_past(moment):
                raise InvalidSchedule(f"Scheduled time is in the past: {schedule}")

        with self._lock:
            draft = self._require_draft()
            draft.options.schedule = value
            return self._commit_locked(f"schedule set to {value}")

    def replace_media(self, media: List[MediaItem]) -> DraftPost:
        """Swap the draft's media; a non-empty list resolves the media query."""
        with self._lock:
            draft = self._require_draft()
            self._swap_media_locked(draft, media)
            return self._commit_locked(f"media replaced ({len(media)} item(s))")

    def toggle_platform(self, platform: Union[Platform, str]) -> bool:
        """
        Add or remove a platform.

        Returns:
            bool: True if the platform is now selected.

        Raises:
            UnknownPlatform: If the identifier is not a supported platform.
        """
        try:
            target = Platform.from_value(platform)
        except ValueError as e:
            raise UnknownPlatform(str(e)) from e

        with self._lock:
            draft = self._require_draft()
            if target in draft.platforms:
                draft.platforms = [p for p in draft.platforms if p != target]
                selected = False
            else:
                draft.platforms = draft.platforms + [target]
                selected = True
            self._commit_locked(f"{target.value} {'selected' if selected else 'deselected'}")
            return selected

    # =========================================================================
    # Readiness and formatting
    # =========================================================================

    def execution_readiness(self) -> ExecutionReadiness:
        """Compute, fresh, whether the active draft can be published now."""
        with self._lock:
            return self._readiness_locked()

    def get_formatted_post_content(self, platform: Union[Platform, str]) -> str:
        """
        Get the draft text as it will be posted to one platform.

        Raises:
            UnknownPlatform: If the identifier is not a supported platform.
            NoActiveDraft: If no draft is active.
        """
        try:
            target = Platform.from_value(platform)
        except ValueError as e:
            raise UnknownPlatform(str(e)) from e
        with self._lock:
            return format_post_content(self._require_draft(), target)

    # =========================================================================
    # Publishing
    # =========================================================================

    def finalize_and_execute_post(self, timeout: Optional[float] = None) -> Dict[Platform, bool]:
        """
        Publish the active draft to every selected platform.

        Platforms run in parallel and fail independently. After all attempts
        the terminal status (posted or failed, with one error log entry per
        failed platform) is written to the store. When every platform has
        succeeded the coordinator resets; otherwise the draft stays active
        and the next call only targets platforms that have not succeeded.

        Args:
            timeout: Overall seconds to wait (defaults to publish_timeout).
                Platforms still running at the deadline count as failed for
                this attempt. Their calls are not cancelled; a late success
                is recorded when it arrives, and until then the platform
                cannot be published to again.

        Returns:
            Dict[Platform, bool]: Outcome for every selected platform.

        Raises:
            AlreadyInProgress: If another publish is in flight, or a timed-out
                call to a selected platform has not returned yet.
            NotReady: If the draft is not ready or a media file failed its
                pre-publish check. Nothing is published or written.
        """
        timeout = timeout if timeout is not None else self.publish_timeout

        with self._lock:
            if self._publishing:
                raise AlreadyInProgress("A publish is already in progress")

            if self._draft is not None:
                waiting = [p for p in self._draft.platforms
                           if p not in self._succeeded and (self._draft_token, p) in self._in_flight]
                if waiting:
                    raise AlreadyInProgress(
                        "Still waiting on an earlier publish to " + ", ".join(p.display_name for p in waiting)
                    )

            readiness = self._readiness_locked()
            if not readiness.is_ready:
                raise NotReady(readiness.missing_requirements)

            draft = self._draft
            stale = [m.file_uri for m in draft.content.media if not self.media_validator(m.file_uri)]
            if stale:
                raise NotReady([f"Media file is no longer available: {uri}" for uri in stale])

            if self._attempts > 0:
                draft.internal.retry_count += 1
            self._attempts += 1
            self._publishing = True
            self._partially_failed = False
            token = self._draft_token
            targets = [p for p in draft.platforms if p not in self._succeeded]
            already_succeeded = [p for p in draft.platforms if p in self._succeeded]
            publish_copy = copy.deepcopy(draft)
            self._notify_locked()

        logger.info(
            f"Publishing draft {publish_copy.id} to {', '.join(p.value for p in targets) or 'no remaining platforms'}"
            + (f" (retry {publish_copy.internal.retry_count})" if publish_copy.internal.retry_count else "")
        )

        try:
            attempt_results, failures, late = self._publish_all(targets, publish_copy, timeout)
        except Exception:
            with self._lock:
                self._publishing = False
                self._notify_locked()
            raise

        now = utc_now()
        errors = [ErrorLogEntry(platform=p.value, message=message, timestamp=now)
                  for p, message in failures.items()]
        all_succeeded = all(attempt_results.values())
        status = PostStatus.POSTED if all_succeeded else PostStatus.FAILED

        self._persist_draft(publish_copy)
        self._write_status(publish_copy.id, status, errors)

        results = {p: True for p in already_succeeded}
        results.update(attempt_results)

        with self._lock:
            self._publishing = False
            self._in_flight.update(((token, p), future) for p, future in late.items())
            if token != self._draft_token:
                logger.info(f"Draft {publish_copy.id} was discarded while publishing; outcome recorded only")
                self._notify_locked()
            else:
                self._succeeded.update(p for p, ok in attempt_results.items() if ok)
                self._last_results = dict(results)
                self._error_log.extend(errors)

                if all_succeeded:
                    logger.info(f"Draft {publish_copy.id} published to all platforms")
                    self._published = True
                    self._notify_locked()
                    self._reset_locked()
                else:
                    failed = ", ".join(p.value for p, ok in results.items() if not ok)
                    logger.warning(f"Draft {publish_copy.id} failed on: {failed}")
                    self._partially_failed = True
                self._notify_locked()

        # Attached last so a call that has just returned settles after this attempt's bookkeeping
        if late:
            attempt = LateAttempt(
                post_id=publish_copy.id,
                token=token,
                platforms=set(publish_copy.platforms),
                succeeded={p for p, ok in results.items() if ok},
            )
            for platform, future in late.items():
                future.add_done_callback(
                    lambda f, platform=platform: self._settle_late(attempt, platform, f)
                )

        return results

    def flush_pending_status(self) -> bool:
        """
        Retry terminal status writes that could not be stored earlier.

        Returns:
            bool: True if nothing is left pending.
        """
        with self._lock:
            pending, self._pending_status = self._pending_status, []

        still_pending = []
        for write in pending:
            try:
                self.storage.record_outcome(write.post_id, write.status, write.errors)
                logger.info(f"Stored deferred status '{write.status.value}' for draft {write.post_id}")
            except DatabaseError as e:
                logger.error(f"Deferred status write for draft {write.post_id} failed again: {e}")
                still_pending.append(write)

        with self._lock:
            self._pending_status = still_pending + self._pending_status
            return not self._pending_status

    # =========================================================================
    # Internals
    # =========================================================================

    def _publish_all(self, targets: List[Platform], draft: DraftPost, timeout: Optional[float]
                     ) -> Tuple[Dict[Platform, bool], Dict[Platform, str], Dict[Platform, Future]]:
        results: Dict[Platform, bool] = {}
        failures: Dict[Platform, str] = {}
        late: Dict[Platform, Future] = {}
        if not targets:
            return results, failures, late

        executor = ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="echopost-publish")
        futures = {executor.submit(self.publisher.publish, platform, draft): platform for platform in targets}
        done, not_done = wait(futures, timeout=timeout)
        executor.shutdown(wait=not not_done)

        for future, platform in futures.items():
            if future in not_done:
                results[platform] = False
                failures[platform] = f"Timed out after {timeout}s"
                late[platform] = future
                logger.error(f"Publishing to {platform.value} timed out")
                continue
            ok, message = self._read_outcome(platform, future)
            results[platform] = ok
            if ok:
                logger.info(f"Published to {platform.value}")
            else:
                failures[platform] = message

        return results, failures, late

    @staticmethod
    def _read_outcome(platform: Platform, future: Future) -> Tuple[bool, Optional[str]]:
        try:
            ok = bool(future.result())
        except Exception as e:
            logger.error(f"Publishing to {platform.value} failed: {e}", exc_info=True)
            return False, str(e) or e.__class__.__name__
        if not ok:
            logger.error(f"Publishing to {platform.value} reported failure")
            return False, f"{platform.display_name} rejected the post"
        return True, None

    def _settle_late(self, attempt: LateAttempt, platform: Platform, future: Future) -> None:
        """Fold in the result of an adapter call that returned after its publish timed out."""
        ok, message = self._read_outcome(platform, future)
        token, post_id = attempt.token, attempt.post_id

        with self._lock:
            if self._in_flight.get((token, platform)) is future:
                del self._in_flight[(token, platform)]
            current = token == self._draft_token and self._draft is not None

            if not ok:
                logger.warning(f"Late result from {platform.value} for draft {post_id}: {message}")
                if current:
                    self._notify_locked()
                return

            logger.warning(f"{platform.display_name} accepted draft {post_id} after the publish timeout")
            attempt.succeeded.add(platform)
            if current:
                self._succeeded.add(platform)
                self._last_results[platform] = True
                finished = (not self._publishing
                            and all(p in self._succeeded for p in self._draft.platforms))
                if not finished:
                    self._notify_locked()
                    return
            elif not attempt.platforms <= attempt.succeeded:
                return

        self._write_status(post_id, PostStatus.POSTED, [])

        with self._lock:
            if token != self._draft_token or self._publishing:
                return
            logger.info(f"Draft {post_id} published to all platforms")
            self._published = True
            self._partially_failed = False
            self._notify_locked()
            self._reset_locked()
            self._notify_locked()

    def _write_status(self, post_id: str, status: PostStatus, errors: List[ErrorLogEntry]) -> None:
        if self.storage is None:
            return
        try:
            retry(
                lambda: self.storage.record_outcome(post_id, status, errors),
                max_attempts=self.status_write_attempts,
                delay=self.status_write_retry_delay,
                exceptions=(DatabaseError,),
            )
        except DatabaseError as e:
            logger.error(f"Could not store status '{status.value}' for draft {post_id}; kept for flush_pending_status(): {e}")
            with self._lock:
                self._pending_status.append(PendingStatusWrite(post_id, status, list(errors)))

    def _persist_draft(self, draft: DraftPost) -> None:
        if self.storage is None:
            return
        with self._lock:
            is_new = draft.id not in self._persisted_ids
            self._persisted_ids.add(draft.id)
        try:
            if is_new:
                try:
                    self.storage.save(draft)
                except DuplicatePost:
                    logger.info(f"Draft {draft.id} is already stored; updating its body")
                    self.storage.update(draft.id, draft)
            else:
                self.storage.update(draft.id, draft)
        except DatabaseError as e:
            logger.error(f"Could not persist draft {draft.id}: {e}")
            if is_new:
                with self._lock:
                    self._persisted_ids.discard(draft.id)

    def _persist_locked(self) -> None:
        if self._draft is not None:
            self._persist_draft(self._draft)

    def _commit_locked(self, description: str) -> DraftPost:
        self._partially_failed = False
        logger.debug(f"Draft {self._draft.id}: {description}")
        self._persist_locked()
        self._notify_locked()
        return copy.deepcopy(self._draft)

    def _install_locked(self, draft: DraftPost, keep_progress: bool) -> None:
        draft = copy.deepcopy(draft)
        if draft.content.media and draft.media_query is not None:
            draft.media_query = None
        self._draft = draft
        self._published = False
        if not keep_progress:
            self._draft_token += 1
            self._succeeded = set()
            self._attempts = 0
            self._last_results = {}
            self._error_log = []
            self._partially_failed = False

    def _reset_locked(self) -> None:
        self._draft = None
        self._draft_token += 1
        self._published = False
        self._partially_failed = False
        self._succeeded = set()
        self._attempts = 0
        self._last_results = {}
        self._error_log = []

    def _swap_media_locked(self, draft: DraftPost, media: List[MediaItem]) -> None:
        draft.content.media = copy.deepcopy(list(media))
        if draft.content.media:
            draft.media_query = None

    def _readiness_locked(self) -> ExecutionReadiness:
        draft = self._draft
        if draft is None:
            return ExecutionReadiness(False, ("No active draft",))

        missing = []
        if not draft.platforms:
            missing.append("Select at least one platform")
        if not draft.content.text.strip() and not draft.content.media:
            missing.append("Add text or media to the post")

        for platform in draft.platforms:
            try:
                authenticated = self.publisher.is_authenticated(platform)
            except Exception as e:
                logger.warning(f"Authentication check for {platform.value} failed: {e}")
                authenticated = False
            if authenticated:
                continue
            if not capabilities_for(platform).can_auto_post:
                missing.append(f"{platform.display_name} can only be shared manually")
            else:
                missing.append(f"Connect your {platform.display_name} account")

        if draft.has_unresolved_media_query:
            missing.append("Select media for this post")
        elif not draft.content.media:
            needs_media = media_required_platforms(draft.platforms)
            if needs_media:
                missing.append("Media required for " + ", ".join(p.display_name for p in needs_media))

        return ExecutionReadiness(not missing, tuple(missing))

    def _state_locked(self) -> DraftState:
        if self._publishing:
            return DraftState.PUBLISHING
        if self._published:
            return DraftState.PUBLISHED
        if self._draft is None:
            return DraftState.NONE
        if self._partially_failed:
            return DraftState.PARTIALLY_FAILED
        if self._readiness_locked().is_ready:
            return DraftState.READY_TO_PUBLISH
        return DraftState.DRAFTING

    def _snapshot_locked(self) -> CoordinatorSnapshot:
        return CoordinatorSnapshot(
            state=self._state_locked(),
            draft=copy.deepcopy(self._draft),
            last_results=dict(self._last_results),
            error_log=tuple(copy.deepcopy(self._error_log)),
        )

    def _notify_locked(self) -> None:
        if not self._subscribers:
            return
        snapshot = self._snapshot_locked()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Coordinator subscriber raised: {e}", exc_info=True)

    def _require_draft(self) -> DraftPost:
        self._ensure_not_publishing()
        if self._draft is None:
            raise NoActiveDraft("No draft post is active")
        return self._draft

    def _ensure_not_publishing(self) -> None:
        if self._publishing:
            raise AlreadyInProgress("The draft cannot be changed while it is being published")

    @staticmethod
    def _coerce(raw: Union[DraftPost, Dict[str, Any]]) -> DraftPost:
        if isinstance(raw, DraftPost):
            return raw
        try:
            return DraftPost.from_dict(raw)
        except ValueError as e:
            raise UnknownPlatform(str(e)) from e

    @staticmethod
    def _normalize_hashtags(hashtags: List[str]) -> List[str]:
        tags = []
        for raw in hashtags:
            tag = normalize_hashtag(raw)
            if tag is None:
                raise InvalidHashtag(f"Invalid hashtag: {raw!r}")
            tags.append(tag)
        return tags
