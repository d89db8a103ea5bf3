"""
Social Service Module

This module handles publishing to BlueSky over the AT Protocol.
It provides authentication, image upload, and post creation with rich
text facets so hashtags and links render as tags and links.
"""

import re
from typing import Optional, List, Any

from atproto import Client, models

from config import settings
from config.platforms import Platform
from data.models import MediaItem, MediaType
from utils.exceptions import AuthenticationError, PostingError, MediaUploadError
from utils.helpers import path_from_uri
from utils.logger import get_logger

logger = get_logger(__name__)

FACET_HASHTAG_PATTERN = re.compile(r'(?:^|\s)(#([A-Za-z0-9_]+))')
FACET_LINK_PATTERN = re.compile(r'https?://[^\s]+')


def build_facets(text: str) -> List[Any]:
    """
    Build rich text facets for the hashtags and links in a post.

    AT Protocol facet indexes are UTF-8 byte offsets, not character offsets.

    Args:
        text: The final post text.

    Returns:
        List: AppBskyRichtextFacet.Main entries (empty if there is nothing to mark up).
    """
    def byte_slice(start: int, end: int):
        return models.AppBskyRichtextFacet.ByteSlice(
            byteStart=len(text[:start].encode('utf-8')),
            byteEnd=len(text[:end].encode('utf-8'))
        )

    facets = []
    for match in FACET_HASHTAG_PATTERN.finditer(text):
        facets.append(
            models.AppBskyRichtextFacet.Main(
                features=[models.AppBskyRichtextFacet.Tag(tag=match.group(2))],
                index=byte_slice(match.start(1), match.end(1))
            )
        )
    for match in FACET_LINK_PATTERN.finditer(text):
        uri = match.group(0).rstrip('.,;:!?)')
        facets.append(
            models.AppBskyRichtextFacet.Main(
                features=[models.AppBskyRichtextFacet.Link(uri=uri)],
                index=byte_slice(match.start(), match.start() + len(uri))
            )
        )
    return facets


class BlueSkyService:
    """Publisher for BlueSky (AT Protocol)."""

    platform = Platform.BLUESKY

    def __init__(self, username: Optional[str] = None, password: Optional[str] = None):
        """Initialize the service and log in with the configured credentials."""
        self.username = username or settings.AT_PROTOCOL_USERNAME
        self.password = password or settings.AT_PROTOCOL_PASSWORD
        self.at_client = Client()
        self._authenticated = self._setup_at_protocol()

    def _setup_at_protocol(self) -> bool:
        """
        Set up AT Protocol authentication.

        Returns:
            bool: True if authentication was successful, False otherwise.
        """
        try:
            if not self.username or not self.password:
                logger.error("Missing AT Protocol credentials")
                return False

            self.at_client.login(self.username, self.password)
            logger.info(f"Successfully logged in to AT Protocol as {self.username}")
            return True

        except Exception as e:
            logger.error(f"Failed to authenticate with AT Protocol: {e}")
            return False

    def is_authenticated(self) -> bool:
        return self._authenticated

    def publish_post(self, text: str, media: List[MediaItem]) -> bool:
        """
        Post text and images to BlueSky.

        Only images are attached (up to the per-post limit); videos are
        skipped with a warning.

        Args:
            text: Final post text, already formatted for BlueSky.
            media: Media attached to the draft.

        Returns:
            bool: True if the post was created.

        Raises:
            AuthenticationError: If the service is not logged in.
            MediaUploadError: If an image cannot be read or uploaded.
            PostingError: If BlueSky rejects the post.
        """
        if not self._authenticated:
            raise AuthenticationError("Not logged in to BlueSky")

        embed = self._upload_images(media)
        facets = build_facets(text)

        try:
            self.at_client.send_post(
                text=text,
                embed=embed,
                facets=facets or None
            )
        except Exception as e:
            logger.error(f"Error posting to AT Protocol: {e}")
            raise PostingError(f"BlueSky rejected the post: {e}") from e

        logger.info(f"Successfully posted to AT Protocol ({len(text)} chars)")
        return True

    def _upload_images(self, media: List[MediaItem]):
        images = [item for item in media if item.media_type == MediaType.IMAGE]
        skipped = len(media) - len(images)
        if skipped:
            logger.warning(f"BlueSky does not accept videos here; skipping {skipped} item(s)")
        if len(images) > settings.BLUESKY_IMAGE_LIMIT:
            logger.warning(f"BlueSky allows {settings.BLUESKY_IMAGE_LIMIT} images; extra images dropped")
            images = images[:settings.BLUESKY_IMAGE_LIMIT]
        if not images:
            return None

        embedded = []
        for item in images:
            path = path_from_uri(item.file_uri)
            try:
                with open(path, 'rb') as f:
                    img_data = f.read()
                upload = self.at_client.com.atproto.repo.upload_blob(img_data)
            except Exception as e:
                logger.error(f"Failed to upload image {item.file_uri}: {e}")
                raise MediaUploadError(f"Could not upload {item.file_uri}: {e}") from e
            embedded.append(models.AppBskyEmbedImages.Image(alt=item.caption or "", image=upload.blob))

        return models.AppBskyEmbedImages.Main(images=embedded)
