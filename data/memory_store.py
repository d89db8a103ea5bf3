"""
In-Memory Post Store

A PostStorage implementation backed by a dict. Used when no database is
configured and as the store in tests. Documents are kept in their JSON
form so a load goes through the same from_dict path as the SQL store.
"""

import copy
import threading
from typing import Optional, List, Dict, Any

from data.models import DraftPost, PostRecord, PostFilter, PostStatus, ErrorLogEntry
from utils.exceptions import QueryError, DuplicatePost
from utils.helpers import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryPostStore:
    """Thread-safe dict-backed post store."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, draft: DraftPost) -> str:
        now = utc_now()
        with self._lock:
            if draft.id in self._documents:
                raise DuplicatePost(f"Post {draft.id} is already stored")
            self._documents[draft.id] = {
                "draft": draft.to_dict(),
                "status": PostStatus.PENDING.value,
                "created_at": now,
                "updated_at": now,
                "last_attempt": None,
                "retry_count": 0,
                "error_log": [],
            }
        logger.debug(f"Saved draft {draft.id}")
        return draft.id

    def update(self, post_id: str, draft: DraftPost) -> None:
        with self._lock:
            document = self._documents.get(post_id)
            if document is None:
                raise QueryError(f"No stored post with id {post_id}")
            document["draft"] = draft.to_dict()
            document["updated_at"] = utc_now()

    def delete(self, post_id: str) -> None:
        with self._lock:
            self._documents.pop(post_id, None)

    def stream(self, post_filter: Optional[PostFilter] = None) -> List[PostRecord]:
        post_filter = post_filter or PostFilter()
        with self._lock:
            documents = copy.deepcopy(list(self._documents.values()))

        records = [self._to_record(doc) for doc in documents]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [r for r in records if post_filter.matches(r)][:post_filter.limit]

    def record_outcome(self, post_id: str, status: PostStatus,
                       errors: Optional[List[ErrorLogEntry]] = None) -> None:
        with self._lock:
            document = self._documents.get(post_id)
            if document is None:
                raise QueryError(f"No stored post with id {post_id}")
            now = utc_now()
            document["status"] = status.value
            document["last_attempt"] = now
            document["updated_at"] = now
            document["error_log"].extend(e.to_dict() for e in errors or [])
            if status == PostStatus.FAILED:
                document["retry_count"] += 1

    @staticmethod
    def _to_record(document: Dict[str, Any]) -> PostRecord:
        return PostRecord(
            draft=DraftPost.from_dict(document["draft"]),
            status=PostStatus(document["status"]),
            created_at=document["created_at"],
            updated_at=document["updated_at"],
            last_attempt=document["last_attempt"],
            retry_count=document["retry_count"],
            error_log=[ErrorLogEntry.from_dict(e) for e in document["error_log"]],
        )
