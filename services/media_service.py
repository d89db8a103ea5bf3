"""
Media Resolution Service Module

Turns a structured media query or explicit file references into validated
MediaItems, and repairs drafts whose media files have gone stale. Candidate
search walks the active media source directories on every call; validity
is always checked against the live filesystem.
"""

import copy
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Set

from config import settings
from data.models import DraftPost, MediaItem, MediaQuery, MediaType
from services.directory_service import DirectoryService, MediaDirectory
from services.media_metadata import (
    mime_type_for_path, is_supported_mime_type, check_file_integrity, build_media_item,
    read_capture_time
)
from utils.helpers import path_from_uri
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MediaCandidate:
    """A media file that matched a query, before it is turned into a MediaItem."""
    path: str
    file_uri: str
    mime_type: str
    media_type: MediaType
    created_at: datetime
    size_bytes: int
    source_id: str

    @property
    def file_name(self) -> str:
        return os.path.basename(self.path)

    def to_media_item(self) -> MediaItem:
        """Build a MediaItem with full device metadata."""
        return build_media_item(self.file_uri)


def _search_words(terms: List[str]) -> List[str]:
    words = []
    for term in terms:
        for word in str(term).lower().split():
            if word and word not in words:
                words.append(word)
    return words


class MediaService:
    """Media Resolution Coordinator."""

    def __init__(self, directory_service: DirectoryService,
                 max_depth: Optional[int] = None,
                 candidate_limit: Optional[int] = None):
        self.directory_service = directory_service
        self.max_depth = max_depth if max_depth is not None else settings.MEDIA_SCAN_MAX_DEPTH
        self.candidate_limit = candidate_limit if candidate_limit is not None else settings.MEDIA_CANDIDATE_LIMIT

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_candidates(self, query: Optional[MediaQuery] = None) -> List[MediaCandidate]:
        """
        Find media files matching a query.

        Empty search terms browse everything. Results from several sources
        are merged without duplicates (by resolved path) and ordered newest
        first, by EXIF capture time where an image carries one and by
        modification time otherwise. A query scoped to a single source is
        ordered by file name.

        Args:
            query: The media query (None browses all active sources).

        Returns:
            List[MediaCandidate]: Possibly empty; never raises for "nothing found".
        """
        query = query or MediaQuery()
        sources = self.directory_service.active_sources()
        scoped = False

        if query.directory_scope:
            source = self.directory_service.find_source(query.directory_scope, sources)
            if source is None and os.path.isdir(os.path.expanduser(query.directory_scope)):
                source = MediaDirectory(
                    id="scope", display_name=query.directory_scope,
                    path=os.path.expanduser(query.directory_scope),
                )
            if source is None:
                logger.info(f"No media source matches scope '{query.directory_scope}'")
                return []
            sources = [source]
            scoped = True

        words = _search_words(query.search_terms)
        phrase = " ".join(str(t) for t in query.search_terms).lower().strip()
        wanted_types = set(query.media_types)

        seen: Set[str] = set()
        candidates: List[MediaCandidate] = []
        for source in sources:
            for candidate in self._scan_source(source):
                real_path = os.path.realpath(candidate.path)
                if real_path in seen:
                    continue
                seen.add(real_path)

                if wanted_types and candidate.media_type not in wanted_types:
                    continue
                if query.date_range and not query.date_range.contains(candidate.created_at):
                    continue
                if words and not self._matches_terms(candidate, source, words, phrase):
                    continue
                candidates.append(candidate)

        if scoped:
            candidates.sort(key=lambda c: c.file_name.lower())
        else:
            candidates.sort(key=lambda c: c.created_at, reverse=True)

        logger.info(
            f"Resolved {len(candidates)} media candidates "
            f"(terms: {words or 'browse'}, sources: {len(sources)})"
        )
        return candidates[:self.candidate_limit]

    def validate(self, file_uri: str) -> bool:
        """Check a media reference against the live filesystem (never cached)."""
        path = path_from_uri(file_uri)
        if not path:
            logger.debug(f"Media reference is not a local file: {file_uri}")
            return False
        return check_file_integrity(path)

    def resolve_references(self, file_uris: List[str]) -> List[MediaItem]:
        """
        Turn explicit file references into validated MediaItems.

        Invalid references are skipped and logged.

        Args:
            file_uris: file:// URIs or plain paths.

        Returns:
            List[MediaItem]: Items for every valid reference, in input order.
        """
        items = []
        for file_uri in file_uris:
            if not self.validate(file_uri):
                logger.warning(f"Skipping invalid media reference: {file_uri}")
                continue
            try:
                items.append(build_media_item(file_uri))
            except OSError as e:
                logger.warning(f"Could not read media reference {file_uri}: {e}")
        return items

    def recover_draft(self, draft: DraftPost) -> Optional[DraftPost]:
        """
        Re-validate a draft's media and drop stale items.

        If every item was dropped, the draft is left unresolved: its media
        query is kept (or a browse query is added when it had none) so the
        caller re-runs resolution instead of publishing without media.

        Args:
            draft: The draft to repair (not modified).

        Returns:
            Optional[DraftPost]: A repaired copy, or None when the draft has
            neither media nor a media query (nothing to recover).
        """
        if not draft.content.media and draft.media_query is None:
            return None

        recovered = copy.deepcopy(draft)
        if not recovered.content.media:
            return recovered

        valid_items = []
        for item in recovered.content.media:
            if self.validate(item.file_uri):
                valid_items.append(item)
            else:
                logger.warning(f"Dropping stale media reference: {item.file_uri}")
        dropped = len(recovered.content.media) - len(valid_items)
        recovered.content.media = valid_items

        if dropped and not valid_items:
            if recovered.media_query is None:
                recovered.media_query = MediaQuery()
            logger.info(f"All media for draft {draft.id} was stale; draft needs media resolution again")
        elif dropped:
            logger.info(f"Dropped {dropped} stale media item(s) from draft {draft.id}")

        return recovered

    # =========================================================================
    # Source management
    # =========================================================================

    def add_source(self, display_name: str, path: str) -> MediaDirectory:
        return self.directory_service.add_source(display_name, path)

    def remove_source(self, directory_id: str) -> None:
        self.directory_service.remove_source(directory_id)

    def set_source_enabled(self, directory_id: str, enabled: bool) -> MediaDirectory:
        return self.directory_service.set_source_enabled(directory_id, enabled)

    def set_custom_sources_enabled(self, enabled: bool) -> None:
        self.directory_service.set_custom_sources_enabled(enabled)

    def reset_sources_to_defaults(self) -> None:
        self.directory_service.reset_sources_to_defaults()

    # =========================================================================
    # Internals
    # =========================================================================

    def _scan_source(self, source: MediaDirectory):
        root = os.path.expanduser(source.path)
        if not os.path.isdir(root):
            logger.debug(f"Media source is not accessible: {root}")
            return

        root_depth = root.rstrip(os.sep).count(os.sep)
        for dirpath, dirnames, filenames in os.walk(root):
            depth = dirpath.rstrip(os.sep).count(os.sep) - root_depth
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            if depth >= self.max_depth:
                dirnames[:] = []

            for filename in filenames:
                if filename.startswith("."):
                    continue
                path = os.path.join(dirpath, filename)
                mime_type = mime_type_for_path(path)
                if not is_supported_mime_type(mime_type):
                    continue
                try:
                    stat = os.stat(path)
                except OSError:
                    continue
                if stat.st_size == 0:
                    continue
                yield MediaCandidate(
                    path=path,
                    file_uri=path,
                    mime_type=mime_type,
                    media_type=MediaType.from_mime(mime_type),
                    created_at=(read_capture_time(path, mime_type)
                                or datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)),
                    size_bytes=stat.st_size,
                    source_id=source.id,
                )

    @staticmethod
    def _matches_terms(candidate: MediaCandidate, source: MediaDirectory,
                       words: List[str], phrase: str) -> bool:
        relative = os.path.relpath(candidate.path, os.path.expanduser(source.path))
        search_text = f"{candidate.file_name} {relative}".lower()
        if phrase and phrase in search_text:
            return True
        return any(word in search_text for word in words)
