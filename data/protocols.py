"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for data layer operations.
These protocols enable dependency injection for the durable post store,
making the coordinator testable without real database connections.

Protocols defined:
- PostStorage: Interface for storing and streaming draft post documents
"""

from typing import Protocol, Optional, List

from data.models import DraftPost, PostRecord, PostFilter, PostStatus, ErrorLogEntry


class PostStorage(Protocol):
    """Protocol defining the interface for draft post storage operations.

    Implementations should provide methods for:
    - Saving, updating and deleting post documents keyed by draft id
    - Streaming stored posts with their status, timestamps and error log
    - Recording the terminal outcome of a publish attempt

    Every method raises a DatabaseError subclass when the store cannot be
    reached. Callers treat save/update/delete as best-effort; the terminal
    outcome write is retried by the caller.
    """

    def save(self, draft: DraftPost) -> str:
        """Store a new post document with status pending.

        Args:
            draft: The draft to store.

        Returns:
            The id the document was stored under (the draft id).

        Raises:
            DuplicatePost: If a document with this id is already stored;
                the stored document is left untouched.
        """
        ...

    def update(self, post_id: str, draft: DraftPost) -> None:
        """Replace the draft body of an existing document.

        Args:
            post_id: The id of the document.
            draft: The new draft body.
        """
        ...

    def delete(self, post_id: str) -> None:
        """Delete a post document. Deleting a missing id is not an error.

        Args:
            post_id: The id of the document.
        """
        ...

    def stream(self, post_filter: Optional[PostFilter] = None) -> List[PostRecord]:
        """Return stored posts, newest first.

        Args:
            post_filter: Optional status/platform selection and limit.

        Returns:
            List of PostRecord objects.
        """
        ...

    def record_outcome(
        self,
        post_id: str,
        status: PostStatus,
        errors: Optional[List[ErrorLogEntry]] = None
    ) -> None:
        """Write the terminal status of a publish attempt.

        Appends the error entries to the document's error log (never
        overwriting earlier ones), stamps last_attempt, and increments
        retry_count when the attempt failed.

        Args:
            post_id: The id of the document.
            status: PostStatus.POSTED or PostStatus.FAILED.
            errors: Entries for each platform that failed in this attempt.
        """
        ...
