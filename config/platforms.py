"""
Platform Definitions for EchoPost

This module is the single source of truth for supported social platforms:
the closed Platform enum, its natural-language aliases, and the capability
table consulted by readiness checks, content formatting, and publishing.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

MB = 1024 * 1024


class Platform(str, Enum):
    """Supported publication targets."""
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    BLUESKY = "bluesky"

    def __str__(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES[self]

    @classmethod
    def from_value(cls, value: Union["Platform", str]) -> "Platform":
        """
        Resolve a platform from its canonical id or a spoken alias.

        Args:
            value: A Platform, canonical name, or alias ("ig", "x", "tik tok").

        Returns:
            Platform: The matching platform.

        Raises:
            ValueError: If the value names no supported platform.
        """
        if isinstance(value, Platform):
            return value
        platform = resolve_alias(str(value))
        if platform is None:
            raise ValueError(f"Unknown platform: {value!r}")
        return platform


class HashtagPosition(str, Enum):
    INLINE = "inline"
    END = "end"


@dataclass(frozen=True)
class PlatformCapabilities:
    """
    What a platform accepts and how EchoPost can deliver to it.

    can_auto_post marks platforms with a publisher. Of the others, those
    with can_manual_share are handed to the user to paste. Video limits
    are None where videos are unsupported.
    """
    can_auto_post: bool
    can_manual_share: bool
    requires_media: bool
    supports_images: bool
    supports_videos: bool
    max_text_length: int
    max_hashtags: int
    hashtag_position: HashtagPosition = HashtagPosition.END
    hashtag_prefix: str = "\n\n"
    max_hashtag_chars: Optional[int] = None
    max_video_seconds: Optional[int] = None
    max_video_bytes: Optional[int] = None


ALIASES: Dict[Platform, List[str]] = {
    Platform.FACEBOOK: ["facebook", "fb"],
    Platform.INSTAGRAM: ["instagram", "insta", "ig"],
    Platform.YOUTUBE: ["youtube", "yt"],
    Platform.TWITTER: ["twitter", "x"],
    Platform.TIKTOK: ["tiktok", "tik tok", "tiktak"],
    Platform.BLUESKY: ["bluesky", "bsky", "blue sky"],
}

DISPLAY_NAMES: Dict[Platform, str] = {
    Platform.FACEBOOK: "Facebook",
    Platform.INSTAGRAM: "Instagram",
    Platform.YOUTUBE: "YouTube",
    Platform.TWITTER: "Twitter",
    Platform.TIKTOK: "TikTok",
    Platform.BLUESKY: "BlueSky",
}

CAPABILITIES: Dict[Platform, PlatformCapabilities] = {
    Platform.FACEBOOK: PlatformCapabilities(
        can_auto_post=False,
        can_manual_share=True,
        requires_media=False,
        supports_images=True,
        supports_videos=True,
        max_text_length=63206,
        max_hashtags=30,
        max_video_seconds=240,
        max_video_bytes=4096 * MB,
    ),
    Platform.INSTAGRAM: PlatformCapabilities(
        can_auto_post=False,
        can_manual_share=True,
        requires_media=True,
        supports_images=True,
        supports_videos=True,
        max_text_length=2200,
        max_hashtags=30,
        max_video_seconds=60,
        max_video_bytes=4000 * MB,
    ),
    Platform.YOUTUBE: PlatformCapabilities(
        can_auto_post=False,
        can_manual_share=False,
        requires_media=True,
        supports_images=False,
        supports_videos=True,
        max_text_length=5000,
        max_hashtags=15,
        max_video_seconds=43200,
        max_video_bytes=128000 * MB,
    ),
    Platform.TWITTER: PlatformCapabilities(
        can_auto_post=True,
        can_manual_share=True,
        requires_media=False,
        supports_images=True,
        supports_videos=True,
        max_text_length=280,
        max_hashtags=3,
        hashtag_position=HashtagPosition.INLINE,
        hashtag_prefix=" ",
        max_video_seconds=140,
        max_video_bytes=512 * MB,
    ),
    Platform.TIKTOK: PlatformCapabilities(
        can_auto_post=False,
        can_manual_share=True,
        requires_media=True,
        supports_images=False,
        supports_videos=True,
        max_text_length=2200,
        max_hashtags=20,
        max_hashtag_chars=100,
        max_video_seconds=600,
        max_video_bytes=287 * MB,
    ),
    Platform.BLUESKY: PlatformCapabilities(
        can_auto_post=True,
        can_manual_share=True,
        requires_media=False,
        supports_images=True,
        supports_videos=False,
        max_text_length=300,
        max_hashtags=5,
    ),
}


def resolve_alias(name: str) -> Optional[Platform]:
    """
    Get the canonical platform for an alias.

    Args:
        name: Canonical name or alias, any case.

    Returns:
        Optional[Platform]: The platform, or None if the name is unknown.
    """
    lowered = (name or "").strip().lower()
    for platform, aliases in ALIASES.items():
        if lowered in aliases:
            return platform
    return None


def capabilities_for(platform: Platform) -> PlatformCapabilities:
    """Get the capability record for a platform."""
    return CAPABILITIES[platform]


def media_required_platforms(platforms) -> List[Platform]:
    """Return the platforms in the given collection that cannot post without media."""
    return [p for p in platforms if CAPABILITIES[p].requires_media]


def manual_share_platforms(platforms) -> List[Platform]:
    """Return the platforms in the given collection that have to be shared by hand."""
    return [p for p in platforms
            if not CAPABILITIES[p].can_auto_post and CAPABILITIES[p].can_manual_share]
