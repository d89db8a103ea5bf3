"""
Directory Service Module

Keeps the registry of media source directories: the default directories
defined in settings plus any custom directories the user registered, each
with an enabled flag, and the global switch that decides whether custom
sources are used at all. The registry is persisted as JSON; every mutation
is applied under a lock and written atomically.
"""

import json
import os
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional, List, Dict, Any, Tuple, Iterable

from config import settings
from utils.exceptions import SourceNotFound, DuplicateSource, ProtectedSource
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MediaDirectory:
    """One registered media source."""
    id: str
    display_name: str
    path: str
    is_default: bool = False
    is_enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "path": self.path,
            "is_default": self.is_default,
            "is_enabled": self.is_enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaDirectory":
        return cls(
            id=data["id"],
            display_name=data.get("display_name") or os.path.basename(data["path"]),
            path=data["path"],
            is_default=bool(data.get("is_default", False)),
            is_enabled=bool(data.get("is_enabled", True)),
        )


def _normalize_path(path: str) -> str:
    return os.path.normcase(os.path.realpath(os.path.expanduser(path)))


def default_directories(
    definitions: Optional[Iterable[Tuple[str, str, str, bool]]] = None
) -> List[MediaDirectory]:
    """Build the default directory list from (id, name, path, enabled) tuples."""
    definitions = definitions if definitions is not None else settings.DEFAULT_MEDIA_DIRECTORIES
    return [
        MediaDirectory(id=dir_id, display_name=name, path=path, is_default=True, is_enabled=enabled)
        for dir_id, name, path, enabled in definitions
    ]


class DirectoryService:
    """Persistent registry of media source directories."""

    def __init__(self, sources_file: Optional[str] = None,
                 defaults: Optional[List[MediaDirectory]] = None):
        """
        Initialize the registry and load any saved state.

        Args:
            sources_file: JSON file for persistence (None keeps the registry in memory).
            defaults: Default directories (from settings if omitted).
        """
        self.sources_file = sources_file
        self._defaults = list(defaults) if defaults is not None else default_directories()
        self._lock = threading.RLock()
        self._custom_sources_enabled = False
        self._directories: List[MediaDirectory] = list(self._defaults)
        self._load()

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def custom_sources_enabled(self) -> bool:
        return self._custom_sources_enabled

    @property
    def directories(self) -> List[MediaDirectory]:
        with self._lock:
            return list(self._directories)

    def active_sources(self) -> List[MediaDirectory]:
        """
        Get the directories that media resolution should scan right now.

        With custom sources enabled this is every enabled registered
        directory; otherwise only the enabled default directories (the
        platform library).
        """
        with self._lock:
            if self._custom_sources_enabled:
                return [d for d in self._directories if d.is_enabled]
            return [d for d in self._directories if d.is_default and d.is_enabled]

    def get_source(self, directory_id: str) -> MediaDirectory:
        with self._lock:
            for directory in self._directories:
                if directory.id == directory_id:
                    return directory
        raise SourceNotFound(f"Unknown media source: {directory_id}")

    def find_source(self, scope: str, candidates: Optional[List[MediaDirectory]] = None) -> Optional[MediaDirectory]:
        """
        Match a spoken or typed scope ("Downloads", a path, an id) to a source.

        Args:
            scope: The scope string.
            candidates: Sources to search (all registered if omitted).

        Returns:
            Optional[MediaDirectory]: The first match, or None.
        """
        if not scope or not scope.strip():
            return None
        candidates = candidates if candidates is not None else self.directories
        wanted = scope.strip().lower()
        wanted_path = _normalize_path(scope.strip())

        for directory in candidates:
            if directory.id.lower() == wanted or directory.display_name.lower() == wanted:
                return directory
        for directory in candidates:
            if _normalize_path(directory.path) == wanted_path:
                return directory
        for directory in candidates:
            if os.path.basename(os.path.normpath(directory.path)).lower() == wanted:
                return directory
        return None

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_source(self, display_name: str, path: str) -> MediaDirectory:
        """
        Register a custom directory (enabled).

        Raises:
            DuplicateSource: If the path is already registered.
            SourceNotFound: If the path is not an existing directory.
        """
        normalized = _normalize_path(path)
        with self._lock:
            if any(_normalize_path(d.path) == normalized for d in self._directories):
                raise DuplicateSource(f"Directory already exists: {path}")
            if not os.path.isdir(path):
                raise SourceNotFound(f"Directory does not exist: {path}")

            directory = MediaDirectory(
                id=f"custom_{int(time.time() * 1000)}_{len(self._directories)}",
                display_name=display_name or os.path.basename(os.path.normpath(path)),
                path=path,
                is_default=False,
                is_enabled=True,
            )
            self._directories.append(directory)
            self._save_locked()

        logger.info(f"Added custom media source: {directory.display_name} ({path})")
        return directory

    def remove_source(self, directory_id: str) -> None:
        """
        Remove a custom directory.

        Raises:
            ProtectedSource: If the directory is one of the defaults.
            SourceNotFound: If no directory has that id.
        """
        with self._lock:
            directory = self.get_source(directory_id)
            if directory.is_default:
                raise ProtectedSource("Cannot remove default directory")
            self._directories = [d for d in self._directories if d.id != directory_id]
            self._save_locked()

        logger.info(f"Removed media source: {directory.display_name}")

    def set_source_enabled(self, directory_id: str, enabled: bool) -> MediaDirectory:
        """
        Enable or disable one directory.

        Raises:
            SourceNotFound: If no directory has that id.
        """
        with self._lock:
            directory = self.get_source(directory_id)
            updated = replace(directory, is_enabled=enabled)
            self._directories = [updated if d.id == directory_id else d for d in self._directories]
            self._save_locked()

        logger.info(f"Media source {updated.display_name} {'enabled' if enabled else 'disabled'}")
        return updated

    def set_custom_sources_enabled(self, enabled: bool) -> None:
        """Switch resolution between registered directories and the default library."""
        with self._lock:
            self._custom_sources_enabled = enabled
            self._save_locked()
        logger.info(f"Custom media sources {'enabled' if enabled else 'disabled'}")

    def reset_sources_to_defaults(self) -> None:
        """Drop every custom directory and restore the default enabled flags."""
        with self._lock:
            self._directories = list(self._defaults)
            self._save_locked()
        logger.info("Media sources reset to defaults")

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load(self) -> None:
        if not self.sources_file or not os.path.exists(self.sources_file):
            return

        try:
            with open(self.sources_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Could not read media sources from {self.sources_file}: {e}")
            return

        stored = {}
        for entry in data.get("directories", []):
            try:
                directory = MediaDirectory.from_dict(entry)
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed media source entry: {e}")
                continue
            stored[directory.id] = directory

        directories = []
        for default in self._defaults:
            saved = stored.pop(default.id, None)
            directories.append(replace(default, is_enabled=saved.is_enabled) if saved else default)

        known_paths = {_normalize_path(d.path) for d in directories}
        for directory in stored.values():
            if directory.is_default or _normalize_path(directory.path) in known_paths:
                continue
            directories.append(directory)
            known_paths.add(_normalize_path(directory.path))

        with self._lock:
            self._custom_sources_enabled = bool(data.get("custom_sources_enabled", False))
            self._directories = directories
        logger.debug(f"Loaded {len(directories)} media sources from {self.sources_file}")

    def _save_locked(self) -> None:
        if not self.sources_file:
            return

        payload = {
            "custom_sources_enabled": self._custom_sources_enabled,
            "directories": [d.to_dict() for d in self._directories],
        }
        tmp_path = f"{self.sources_file}.tmp"
        try:
            directory = os.path.dirname(os.path.abspath(self.sources_file))
            os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.sources_file)
        except OSError as e:
            logger.error(f"Could not save media sources to {self.sources_file}: {e}")
