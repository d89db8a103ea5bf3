"""
Data Models for EchoPost

This module contains the data classes shared by the recording pipeline,
the media resolution coordinator, the post coordinator, and the stores.
Every model maps to and from the JSON document shape used for persistence
(`to_dict` / `from_dict`).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from config.platforms import Platform
from utils.helpers import utc_now, parse_iso_datetime


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return parse_iso_datetime(str(value))


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def from_mime(cls, mime_type: str) -> Optional["MediaType"]:
        if mime_type.startswith("image/"):
            return cls.IMAGE
        if mime_type.startswith("video/"):
            return cls.VIDEO
        return None


class PostStatus(str, Enum):
    PENDING = "pending"
    POSTED = "posted"
    FAILED = "failed"


@dataclass
class DeviceMetadata:
    """Metadata read from the device or the file itself."""
    width: int = 0
    height: int = 0
    orientation: int = 1                    # EXIF orientation, 1 = upright
    file_size_bytes: int = 0
    creation_time: Optional[datetime] = None
    duration_seconds: Optional[float] = None  # Videos only
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "orientation": self.orientation,
            "file_size_bytes": self.file_size_bytes,
            "creation_time": _iso(self.creation_time),
            "duration_seconds": self.duration_seconds,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DeviceMetadata":
        data = data or {}
        return cls(
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            orientation=int(data.get("orientation") or 1),
            file_size_bytes=int(data.get("file_size_bytes") or 0),
            creation_time=_parse(data.get("creation_time")),
            duration_seconds=data.get("duration_seconds"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass
class MediaItem:
    """A resolved reference to a local image or video.

    The file behind `file_uri` can disappear at any time, so an item is only
    trusted after a fresh validity check.
    """
    file_uri: str
    mime_type: str
    device_metadata: DeviceMetadata = field(default_factory=DeviceMetadata)
    caption: Optional[str] = None

    @property
    def media_type(self) -> Optional[MediaType]:
        return MediaType.from_mime(self.mime_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_uri": self.file_uri,
            "mime_type": self.mime_type,
            "device_metadata": self.device_metadata.to_dict(),
            "caption": self.caption,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaItem":
        return cls(
            file_uri=data["file_uri"],
            mime_type=data.get("mime_type") or "application/octet-stream",
            device_metadata=DeviceMetadata.from_dict(data.get("device_metadata")),
            caption=data.get("caption"),
        )


@dataclass
class DateRange:
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def contains(self, moment: Optional[datetime]) -> bool:
        """Check a timestamp against the range; unknown timestamps never match a bounded range."""
        if moment is None:
            return self.start is None and self.end is None
        if self.start and _comparable(moment, self.start) < self.start:
            return False
        if self.end and _comparable(moment, self.end) > self.end:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"start": _iso(self.start), "end": _iso(self.end)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["DateRange"]:
        if not data:
            return None
        return cls(start=_parse(data.get("start")), end=_parse(data.get("end")))


def _comparable(value: datetime, reference: datetime) -> datetime:
    # Match the reference's awareness so mixed values still compare
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.replace(tzinfo=None)
    if value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    return value


@dataclass
class MediaQuery:
    """An unresolved description of the media a post should carry."""
    search_terms: List[str] = field(default_factory=list)
    media_types: List[MediaType] = field(default_factory=list)
    date_range: Optional[DateRange] = None
    directory_scope: Optional[str] = None

    @property
    def is_browse(self) -> bool:
        return not [t for t in self.search_terms if t.strip()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search_terms": list(self.search_terms),
            "media_types": [t.value for t in self.media_types],
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "directory_scope": self.directory_scope,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["MediaQuery"]:
        if data is None:
            return None
        return cls(
            search_terms=[str(t) for t in data.get("search_terms") or []],
            media_types=[MediaType(t) for t in data.get("media_types") or []],
            date_range=DateRange.from_dict(data.get("date_range")),
            directory_scope=data.get("directory_scope"),
        )


@dataclass
class Content:
    text: str = ""
    hashtags: List[str] = field(default_factory=list)  # stored without '#'
    mentions: List[str] = field(default_factory=list)
    link: Optional[str] = None
    media: List[MediaItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "hashtags": list(self.hashtags),
            "mentions": list(self.mentions),
            "link": self.link,
            "media": [m.to_dict() for m in self.media],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Content":
        data = data or {}
        return cls(
            text=data.get("text") or "",
            hashtags=list(data.get("hashtags") or []),
            mentions=list(data.get("mentions") or []),
            link=data.get("link"),
            media=[MediaItem.from_dict(m) for m in data.get("media") or []],
        )


@dataclass
class Options:
    schedule: str = "now"                      # "now" or an ISO-8601 timestamp
    location_tag: Optional[str] = None
    visibility: Dict[str, str] = field(default_factory=dict)
    reply_target: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule": self.schedule,
            "location_tag": self.location_tag,
            "visibility": dict(self.visibility),
            "reply_target": dict(self.reply_target),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Options":
        data = data or {}
        return cls(
            schedule=data.get("schedule") or "now",
            location_tag=data.get("location_tag"),
            visibility=dict(data.get("visibility") or {}),
            reply_target=dict(data.get("reply_target") or {}),
        )


@dataclass
class Internal:
    original_transcript: str = ""
    ai_generated: bool = False
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_transcript": self.original_transcript,
            "ai_generated": self.ai_generated,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Internal":
        data = data or {}
        return cls(
            original_transcript=data.get("original_transcript") or "",
            ai_generated=bool(data.get("ai_generated", False)),
            retry_count=int(data.get("retry_count") or 0),
        )


@dataclass
class DraftPost:
    """The canonical, mutable, not-yet-published social post."""
    platforms: List[Platform] = field(default_factory=list)
    content: Content = field(default_factory=Content)
    media_query: Optional[MediaQuery] = None
    options: Options = field(default_factory=Options)
    platform_data: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    internal: Internal = field(default_factory=Internal)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @property
    def has_media(self) -> bool:
        return bool(self.content.media)

    @property
    def has_unresolved_media_query(self) -> bool:
        return self.media_query is not None and not self.content.media

    @property
    def is_resolved(self) -> bool:
        """Resolved when media is present, or no media was ever requested."""
        return self.has_media or self.media_query is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": _iso(self.created_at),
            "platforms": [p.value for p in self.platforms],
            "content": self.content.to_dict(),
            "media_query": self.media_query.to_dict() if self.media_query else None,
            "options": self.options.to_dict(),
            "platform_data": {k: dict(v) for k, v in self.platform_data.items()},
            "internal": self.internal.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DraftPost":
        """
        Build a draft from its document form.

        Raises:
            ValueError: If a platform identifier is not supported.
        """
        kwargs = {}
        if data.get("id"):
            kwargs["id"] = data["id"]
        if data.get("created_at"):
            kwargs["created_at"] = _parse(data["created_at"])
        return cls(
            platforms=[Platform.from_value(p) for p in data.get("platforms") or []],
            content=Content.from_dict(data.get("content")),
            media_query=MediaQuery.from_dict(data.get("media_query")),
            options=Options.from_dict(data.get("options")),
            platform_data={k: dict(v or {}) for k, v in (data.get("platform_data") or {}).items()},
            internal=Internal.from_dict(data.get("internal")),
            **kwargs
        )


@dataclass
class ErrorLogEntry:
    """One append-only audit entry for a failed publish attempt."""
    platform: str
    message: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": _iso(self.timestamp), "platform": self.platform, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorLogEntry":
        return cls(
            platform=data.get("platform") or "",
            message=data.get("message") or "",
            timestamp=_parse(data.get("timestamp")) or utc_now(),
        )


@dataclass
class PostRecord:
    """A persisted draft together with its server-side bookkeeping."""
    draft: DraftPost
    status: PostStatus = PostStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_attempt: Optional[datetime] = None
    retry_count: int = 0
    error_log: List[ErrorLogEntry] = field(default_factory=list)


@dataclass
class PostFilter:
    """Selection for PostStorage.stream()."""
    status: Optional[PostStatus] = None
    platform: Optional[Platform] = None
    limit: int = 50

    def matches(self, record: PostRecord) -> bool:
        if self.status is not None and record.status != self.status:
            return False
        if self.platform is not None and self.platform not in record.draft.platforms:
            return False
        return True
