"""
Twitter Service Module

This module handles publishing to Twitter/X. Media is uploaded through the
v1.1 API (the only one with media upload) and the tweet itself is created
through the v2 Client, both authenticated with OAuth 1.0a user credentials.
"""

import os
from typing import Optional, List

import tweepy

from config import settings
from config.platforms import Platform
from data.models import MediaItem, MediaType
from utils.exceptions import AuthenticationError, PostingError, MediaUploadError
from utils.helpers import path_from_uri
from utils.logger import get_logger

logger = get_logger(__name__)


class TwitterService:
    """Publisher for Twitter/X."""

    platform = Platform.TWITTER

    def __init__(self, api_key: Optional[str] = None, api_key_secret: Optional[str] = None,
                 access_token: Optional[str] = None, access_token_secret: Optional[str] = None):
        """Initialize the Twitter service with API authentication."""
        self.api_key = api_key or settings.TWITTER_API_KEY
        self.api_key_secret = api_key_secret or settings.TWITTER_API_KEY_SECRET
        self.access_token = access_token or settings.TWITTER_ACCESS_TOKEN
        self.access_token_secret = access_token_secret or settings.TWITTER_ACCESS_TOKEN_SECRET
        self.api = None
        self.client = None

        self._authenticated = self._setup_twitter()

    def _setup_twitter(self) -> bool:
        """
        Set up Twitter API authentication using Tweepy.

        Returns:
            bool: True if authentication was successful, False otherwise.
        """
        if not all([self.api_key, self.api_key_secret, self.access_token, self.access_token_secret]):
            logger.error("Twitter OAuth 1.0a credentials are incomplete. "
                         "Posting requires API key, API secret, access token and access secret.")
            return False

        try:
            auth = tweepy.OAuth1UserHandler(
                self.api_key,
                self.api_key_secret,
                self.access_token,
                self.access_token_secret
            )
            self.api = tweepy.API(auth)
            self.api.verify_credentials()

            self.client = tweepy.Client(
                consumer_key=self.api_key,
                consumer_secret=self.api_key_secret,
                access_token=self.access_token,
                access_token_secret=self.access_token_secret
            )
            logger.info("Successfully authenticated with Twitter API using OAuth 1.0a")
            return True

        except Exception as e:
            logger.error(f"Failed to authenticate with Twitter: {e}")
            return False

    def is_authenticated(self) -> bool:
        return self._authenticated

    def publish_post(self, text: str, media: List[MediaItem]) -> bool:
        """
        Post a tweet with optional media.

        Args:
            text: Final tweet text, already formatted for Twitter.
            media: Media attached to the draft (at most TWITTER_MEDIA_LIMIT are sent).

        Returns:
            bool: True if Twitter returned the created tweet.

        Raises:
            AuthenticationError: If the service is not authenticated.
            MediaUploadError: If a media file cannot be uploaded.
            PostingError: If Twitter rejects the tweet.
        """
        if not self._authenticated:
            raise AuthenticationError("Twitter account is not connected")

        media_ids = self._upload_media(media)

        try:
            response = self.client.create_tweet(text=text, media_ids=media_ids or None)
        except tweepy.TweepyException as e:
            logger.error(f"Error posting tweet: {e}")
            raise PostingError(f"Twitter rejected the tweet: {e}") from e

        if response and getattr(response, 'data', None):
            logger.info(f"Successfully posted tweet {response.data.get('id', '')}")
            return True

        logger.error("Failed to post tweet: No valid response from Twitter API")
        return False

    def _upload_media(self, media: List[MediaItem]) -> List[int]:
        if len(media) > settings.TWITTER_MEDIA_LIMIT:
            logger.warning(f"Twitter allows {settings.TWITTER_MEDIA_LIMIT} media items; extra items dropped")

        media_ids = []
        for item in media[:settings.TWITTER_MEDIA_LIMIT]:
            path = path_from_uri(item.file_uri)
            if not path or not os.path.isfile(path):
                raise MediaUploadError(f"Media file not found: {item.file_uri}")
            try:
                if item.media_type == MediaType.VIDEO:
                    uploaded = self.api.media_upload(filename=path, media_category="tweet_video", chunked=True)
                else:
                    uploaded = self.api.media_upload(filename=path)
            except tweepy.TweepyException as e:
                logger.error(f"Failed to upload media {path}: {e}")
                raise MediaUploadError(f"Could not upload {item.file_uri}: {e}") from e
            media_ids.append(uploaded.media_id)
        return media_ids
