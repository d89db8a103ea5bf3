"""
Service Protocol Definitions

This module defines typing.Protocol interfaces for the collaborators consumed
by the EchoPost core. These protocols enable loose coupling, dependency
injection, and easier testing.

Protocols defined:
- AudioRecorder: Interface for the microphone capture sink
- RecordingEnvironment: Interface for permission and storage preconditions
- Transcriber: Interface for speech-to-text
- CommandParser: Interface for turning a transcript into a structured draft
- PublishAdapter: Interface for per-platform publication and auth checks
- PlatformPublisher: Interface for one concrete platform client (BlueSky, Twitter)
"""

from typing import Protocol, Optional, List
from dataclasses import dataclass

from config import settings
from config.platforms import Platform
from data.models import DraftPost, MediaItem


@dataclass(frozen=True)
class AudioCaptureConfig:
    """Encoding profile for a capture session."""
    sample_rate: int = settings.RECORDING_SAMPLE_RATE
    channels: int = settings.RECORDING_CHANNELS
    bit_rate: int = settings.RECORDING_BIT_RATE
    encoder: str = "aac_lc"
    file_extension: str = settings.RECORDING_FILE_EXTENSION


class AudioRecorder(Protocol):
    """Protocol defining the interface for a microphone capture sink.

    The concrete driver is platform specific and supplied by the host
    application; the recording state machine only drives it.
    """

    def start(self, path: str, config: AudioCaptureConfig) -> None:
        """Open the capture sink and begin writing to a file.

        Args:
            path: Destination file for the encoded audio.
            config: Encoding profile.

        Raises:
            Exception: Any failure to open the sink.
        """
        ...

    def stop(self) -> Optional[str]:
        """Stop capturing and finalize the file.

        Returns:
            The path that was written, or None if the driver lost it.
        """
        ...

    def get_amplitude(self) -> float:
        """Return the instantaneous signal level in dBFS (0 is full scale)."""
        ...


class RecordingEnvironment(Protocol):
    """Protocol for device preconditions checked before capture starts."""

    def has_microphone_permission(self) -> bool:
        ...

    def has_writable_scratch_space(self) -> bool:
        ...


class Transcriber(Protocol):
    """Protocol defining the interface for speech-to-text services."""

    def transcribe(self, audio_path: str) -> str:
        """Transcribe an audio file.

        Args:
            audio_path: Path to the recorded audio.

        Returns:
            The transcript text (may be empty).

        Raises:
            TranscriptionFailed: On network, quota or malformed-response errors.
        """
        ...


class CommandParser(Protocol):
    """Protocol defining the interface for structured command parsing."""

    def parse_command(
        self,
        text: str,
        preselected_media: Optional[List[MediaItem]] = None
    ) -> DraftPost:
        """Turn a spoken command into a draft post.

        Args:
            text: The transcript.
            preselected_media: Media the user already picked, if any.

        Returns:
            A DraftPost with at least one platform and non-empty text.

        Raises:
            ParseFailed: When the structured result is malformed.
        """
        ...


class PublishAdapter(Protocol):
    """Protocol for publishing a draft to one platform and checking auth."""

    def publish(self, platform: Platform, draft: DraftPost) -> bool:
        """Submit the draft to a platform.

        Returns:
            True on success, False on a reported failure.

        Raises:
            Exception: Any error is treated by the caller as a failure.
        """
        ...

    def is_authenticated(self, platform: Platform) -> bool:
        ...


class PlatformPublisher(Protocol):
    """Protocol for a single platform client.

    This protocol unifies BlueSky (SocialService) and Twitter
    (TwitterService) so the publish router can treat them interchangeably.
    """

    platform: Platform

    def is_authenticated(self) -> bool:
        ...

    def publish_post(self, text: str, media: List[MediaItem]) -> bool:
        """Post formatted text with optional media.

        Args:
            text: Text already formatted for this platform.
            media: Validated media items.

        Returns:
            True if the platform accepted the post.
        """
        ...
