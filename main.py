"""
EchoPost Application

This is the main entry point for EchoPost. It wires the recording,
transcription, command parsing, media resolution and publishing services
together and offers a small CLI that runs a spoken (or typed) command all
the way to a published post.

Version: 1.0
"""

import sys
import argparse
import logging
from typing import Optional, List, Dict

from config import settings
from config.platforms import Platform, manual_share_platforms
from data.database import DatabaseConnection
from data.memory_store import InMemoryPostStore
from data.models import DraftPost
from data.protocols import PostStorage
from services.ai_service import AIService
from services.directory_service import DirectoryService
from services.media_service import MediaService
from services.post_coordinator import PostCoordinator
from services.protocols import AudioRecorder, CommandParser, Transcriber
from services.publish_service import PublishService
from services.recording_service import RecordingService, LocalRecordingEnvironment
from services.social_service import BlueSkyService
from services.transcription_service import TranscriptionService
from services.twitter_service import TwitterService
from utils.exceptions import EchoPostError, NotReady
from utils.logger import get_logger, setup_file_logging

# Set up logging
logger = get_logger(__name__)


class EchoPost:
    """
    Main application object for EchoPost.

    Owns one instance of each service and exposes the end-to-end flow:
    transcript -> draft -> media -> readiness -> publish.
    """

    def __init__(self,
                 parser: Optional[CommandParser] = None,
                 transcriber: Optional[Transcriber] = None,
                 publisher: Optional[PublishService] = None,
                 storage: Optional[PostStorage] = None,
                 directory_service: Optional[DirectoryService] = None,
                 recorder: Optional[AudioRecorder] = None,
                 validate: bool = True):
        """
        Initialize EchoPost.

        Args:
            parser: Command parser (Gemini by default).
            transcriber: Speech-to-text service (Whisper by default, created lazily).
            publisher: Publish router (built from ENABLE_* settings by default).
            storage: Post store (SQL Server if configured, else in memory).
            directory_service: Media source registry.
            recorder: Audio capture driver; recording is unavailable without one.
            validate: Validate settings before wiring services.
        """
        if validate:
            settings.validate_settings()

        self.storage = storage if storage is not None else self._create_storage()
        self.directory_service = directory_service or DirectoryService(settings.MEDIA_SOURCES_FILE)
        self.media_service = MediaService(self.directory_service)
        self.parser = parser or AIService()
        self._transcriber = transcriber
        self.publisher = publisher or self._create_publisher()
        self.coordinator = PostCoordinator(
            self.publisher,
            storage=self.storage,
            media_validator=self.media_service.validate,
        )

        self.recording = None
        if recorder is not None:
            self.recording = RecordingService(recorder, LocalRecordingEnvironment(), self.transcriber)

    @property
    def transcriber(self) -> Transcriber:
        if self._transcriber is None:
            self._transcriber = TranscriptionService()
        return self._transcriber

    @staticmethod
    def _create_storage() -> PostStorage:
        if settings.DB_CONNECTION_STRING:
            logger.info("Using SQL Server post storage")
            return DatabaseConnection()
        logger.info("No database configured, using in-memory post storage")
        return InMemoryPostStore()

    @staticmethod
    def _create_publisher() -> PublishService:
        publisher = PublishService()
        if settings.ENABLE_BLUESKY:
            publisher.register(BlueSkyService())
        else:
            logger.info("BlueSky posting is disabled")
        if settings.ENABLE_TWITTER:
            publisher.register(TwitterService())
        else:
            logger.info("Twitter posting is disabled")
        return publisher

    # =========================================================================
    # Workflow
    # =========================================================================

    def transcribe_file(self, audio_path: str) -> str:
        """Transcribe an existing audio file (outside the recording state machine)."""
        return self.transcriber.transcribe(audio_path)

    def create_draft(self, transcript: str, media_uris: Optional[List[str]] = None,
                     platforms: Optional[List[str]] = None) -> DraftPost:
        """
        Parse a transcript and install the draft in the coordinator.

        Args:
            transcript: What the user said.
            media_uris: Explicit media references; these win over any media
                the user described.
            platforms: Platform names that override the parsed selection.

        Returns:
            DraftPost: The adopted draft.
        """
        media = self.media_service.resolve_references(media_uris) if media_uris else None
        draft = self.parser.parse_command(transcript, preselected_media=media or None)
        if platforms:
            draft.platforms = [Platform.from_value(p) for p in platforms]
        return self.coordinator.adopt(draft)

    def resolve_media(self, select_first: bool = True) -> int:
        """
        Run the active draft's media query.

        Args:
            select_first: Attach the best candidate to the draft. Without a
                picker this is the only way to resolve the query.

        Returns:
            int: Number of candidates found.
        """
        draft = self.coordinator.snapshot().draft
        if draft is None or not draft.has_unresolved_media_query:
            return 0

        candidates = self.media_service.resolve_candidates(draft.media_query)
        if not candidates:
            logger.warning("No media matched the request")
            return 0
        if select_first:
            logger.info(f"Selecting {candidates[0].file_name} from {len(candidates)} candidate(s)")
            self.coordinator.replace_media([candidates[0].to_media_item()])
        return len(candidates)

    def resume_draft(self, post_id: str) -> Optional[DraftPost]:
        """
        Bring a stored draft back into the coordinator, repairing stale media.

        Args:
            post_id: Id of the stored draft.

        Returns:
            Optional[DraftPost]: The installed draft, or None if it was not found.
        """
        for record in self.storage.stream():
            if record.draft.id != post_id:
                continue
            draft = self.media_service.recover_draft(record.draft) or record.draft
            return self.coordinator.sync_with_existing(draft)
        logger.warning(f"No stored draft with id {post_id}")
        return None

    def preview(self) -> Dict[Platform, str]:
        """Get the text that would be published on each selected platform."""
        draft = self.coordinator.snapshot().draft
        if draft is None:
            return {}
        return {p: self.coordinator.get_formatted_post_content(p) for p in draft.platforms}

    def manual_share(self) -> Dict[Platform, str]:
        """Get ready-to-paste text for selected platforms that can only be shared by hand."""
        draft = self.coordinator.snapshot().draft
        if draft is None:
            return {}
        return {p: self.coordinator.get_formatted_post_content(p)
                for p in manual_share_platforms(draft.platforms)}

    def run(self, transcript: Optional[str] = None, audio_path: Optional[str] = None,
            platforms: Optional[List[str]] = None, media_uris: Optional[List[str]] = None,
            test_mode: bool = False) -> bool:
        """
        Run the full workflow once.

        Args:
            transcript: Command text (skips transcription).
            audio_path: Audio file to transcribe when no transcript is given.
            platforms: Platform override.
            media_uris: Explicit media references.
            test_mode: Stop after readiness and log the formatted posts.

        Returns:
            bool: True if every platform succeeded (or, in test mode, the draft is ready).
        """
        try:
            if not transcript:
                if not audio_path:
                    logger.error("Nothing to do: provide a transcript or an audio file")
                    return False
                transcript = self.transcribe_file(audio_path)
                logger.info(f"Transcript: {transcript}")

            self.create_draft(transcript, media_uris=media_uris, platforms=platforms)
            self.resolve_media()

            for platform, text in self.manual_share().items():
                logger.info(f"Share to {platform.display_name} manually:\n{text}")

            readiness = self.coordinator.execution_readiness()
            if not readiness.is_ready:
                for requirement in readiness.missing_requirements:
                    logger.warning(f"Not ready: {requirement}")
                return False

            if test_mode:
                for platform, text in self.preview().items():
                    logger.info(f"TEST MODE - would post to {platform.display_name}:\n{text}")
                return True

            results = self.coordinator.finalize_and_execute_post()
            for platform, ok in results.items():
                logger.info(f"{platform.display_name}: {'posted' if ok else 'failed'}")
            return all(results.values())

        except NotReady as e:
            logger.warning(f"Draft is not ready: {', '.join(e.missing_requirements)}")
            return False
        except EchoPostError as e:
            logger.error(f"EchoPost workflow failed: {e}")
            return False


def create_echo_post(**kwargs) -> EchoPost:
    """Factory for EchoPost, mainly for tests and embedding."""
    return EchoPost(**kwargs)


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='EchoPost - voice to social post')
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--transcript', type=str, help='Command text to parse')
    source.add_argument('--audio', type=str, help='Audio file to transcribe and parse')
    parser.add_argument('--media', type=str, action='append', default=None,
                        help='Media file to attach (repeatable)')
    parser.add_argument('--platforms', type=str, default=None,
                        help='Comma-separated list of platforms (overrides the spoken choice)')
    parser.add_argument('--test', action='store_true', help='Run in test mode without posting')
    parser.add_argument('--log-file', type=str, default='echopost.log', help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = parse_arguments(argv)

    # Set up logging
    log_level = getattr(logging, args.log_level)
    setup_file_logging(args.log_file, log_level)

    platforms = None
    if args.platforms:
        platforms = [p.strip().lower() for p in args.platforms.split(',') if p.strip()]

    logger.info("Starting EchoPost")
    if platforms:
        logger.info(f"Posting to platforms: {', '.join(platforms)}")

    try:
        app = create_echo_post(validate=not args.test)
        success = app.run(
            transcript=args.transcript,
            audio_path=args.audio,
            platforms=platforms,
            media_uris=args.media,
            test_mode=args.test,
        )

        if success:
            logger.info("EchoPost completed successfully")
            exit_code = 0
        else:
            logger.warning("EchoPost completed with warnings or errors")
            exit_code = 1

    except Exception as e:
        logger.error(f"Unhandled exception in EchoPost: {e}", exc_info=True)
        exit_code = 2

    logger.info(f"EchoPost finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
