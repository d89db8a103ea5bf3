"""
Publish Service Module

Routes a draft to the publisher registered for each platform, rendering the
text for that platform first.
"""

from typing import Dict, List, Optional

from config.platforms import Platform, PlatformCapabilities, capabilities_for
from data.models import DraftPost, MediaItem, MediaType
from services.content_formatter import format_post_content
from services.protocols import PlatformPublisher
from utils.exceptions import PostingError
from utils.logger import get_logger

logger = get_logger(__name__)


def media_accepted(item: MediaItem, platform: Platform,
                   capabilities: Optional[PlatformCapabilities] = None) -> bool:
    """
    Check whether a platform takes a media item.

    Videos are also held to the platform's duration and size limits; an
    unknown duration is let through.
    """
    capabilities = capabilities or capabilities_for(platform)
    if item.media_type == MediaType.IMAGE:
        return capabilities.supports_images
    if item.media_type != MediaType.VIDEO or not capabilities.supports_videos:
        return False

    metadata = item.device_metadata
    duration = metadata.duration_seconds
    if capabilities.max_video_seconds and duration and duration > capabilities.max_video_seconds:
        logger.warning(f"{item.file_uri} runs {duration:.0f}s; "
                       f"{platform.display_name} allows {capabilities.max_video_seconds}s")
        return False
    if capabilities.max_video_bytes and metadata.file_size_bytes > capabilities.max_video_bytes:
        logger.warning(f"{item.file_uri} is too large for {platform.display_name}")
        return False
    return True


class PublishService:
    """Publish adapter that fans a draft out to per-platform publishers."""

    def __init__(self, publishers: Optional[List[PlatformPublisher]] = None):
        self._publishers: Dict[Platform, PlatformPublisher] = {}
        for publisher in publishers or []:
            self.register(publisher)

    def register(self, publisher: PlatformPublisher) -> None:
        self._publishers[publisher.platform] = publisher
        logger.debug(f"Registered publisher for {publisher.platform.value}")

    @property
    def platforms(self) -> List[Platform]:
        return list(self._publishers)

    def is_authenticated(self, platform: Platform) -> bool:
        """Platforms that can only be shared manually never count as connected."""
        if not capabilities_for(platform).can_auto_post:
            return False
        publisher = self._publishers.get(platform)
        return bool(publisher and publisher.is_authenticated())

    def publish(self, platform: Platform, draft: DraftPost) -> bool:
        """
        Publish a draft to one platform.

        Media the platform does not accept (wrong type, or a video over its
        duration or size limit) is left out.

        Raises:
            PostingError: If the platform only supports manual sharing or no
                publisher is registered for it.
        """
        capabilities = capabilities_for(platform)
        if not capabilities.can_auto_post:
            raise PostingError(f"{platform.display_name} can only be shared manually")

        publisher = self._publishers.get(platform)
        if publisher is None:
            raise PostingError(f"No publisher configured for {platform.display_name}")

        media = [item for item in draft.content.media if media_accepted(item, platform, capabilities)]
        text = format_post_content(draft, platform)
        logger.info(f"Publishing draft {draft.id} to {platform.value} with {len(media)} media item(s)")
        return publisher.publish_post(text, media)
