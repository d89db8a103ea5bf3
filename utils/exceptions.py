"""
Custom Exception Classes for EchoPost

This module defines custom exceptions for better error handling and
categorization of failures across the voice-to-post pipeline.
"""


class EchoPostError(Exception):
    """Base exception for all EchoPost errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(EchoPostError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Environment Errors
# =============================================================================

class RecordingEnvironmentError(EchoPostError):
    """Base exception for device and storage preconditions."""
    pass


class PermissionDenied(RecordingEnvironmentError):
    """Raised when microphone permission has not been granted."""
    pass


class EnvironmentUnavailable(RecordingEnvironmentError):
    """Raised when the scratch location for audio capture is not writable."""
    pass


class CaptureStartFailed(RecordingEnvironmentError):
    """Raised when the audio capture sink refuses to start."""
    pass


# =============================================================================
# Recording Errors
# =============================================================================

class RecordingError(EchoPostError):
    """Base exception for a finished recording that cannot be used."""
    pass


class NoSpeechDetected(RecordingError):
    """Raised when no sample crossed the speech threshold during a session."""
    pass


class RecordingTooShort(RecordingError):
    """Raised when the recording is shorter than the minimum duration."""

    def __init__(self, duration: float, minimum: float):
        self.duration = duration
        self.minimum = minimum
        super().__init__(
            f"Recording too short ({duration:.2f}s). Minimum duration: {minimum}s"
        )


class InvalidAudioAsset(RecordingError):
    """Raised when the captured audio file is missing, empty, or not a valid container."""
    pass


# =============================================================================
# AI Service Errors
# =============================================================================

class AIServiceError(EchoPostError):
    """Base exception for transcription and command parsing errors."""
    pass


class TranscriptionFailed(AIServiceError):
    """Raised when the transcription service fails (network, quota, malformed response)."""
    pass


class EmptyTranscription(TranscriptionFailed):
    """Raised when the transcription service returns no text."""
    pass


class ParseFailed(AIServiceError):
    """Raised when a structured draft is malformed or missing required fields."""
    pass


# =============================================================================
# Content Errors
# =============================================================================

class ContentError(EchoPostError):
    """Base exception for edits that are rejected as invalid input."""
    pass


class InvalidSchedule(ContentError):
    """Raised when a schedule is neither "now" nor a future ISO-8601 timestamp."""
    pass


class UnknownPlatform(ContentError):
    """Raised when a platform identifier is not part of the supported set."""
    pass


class InvalidHashtag(ContentError):
    """Raised when a hashtag is empty or contains whitespace after normalisation."""
    pass


# =============================================================================
# Coordinator Errors
# =============================================================================

class CoordinatorError(EchoPostError):
    """Base exception for post coordinator lifecycle errors."""
    pass


class NoActiveDraft(CoordinatorError):
    """Raised when an operation needs a draft but none has been adopted."""
    pass


class NotReady(CoordinatorError):
    """Raised when publishing is requested for a draft that is not ready."""

    def __init__(self, missing_requirements):
        self.missing_requirements = list(missing_requirements)
        super().__init__("Post is not ready: " + ", ".join(self.missing_requirements))


class AlreadyInProgress(CoordinatorError):
    """Raised when a single-flight operation is re-entered while still running."""
    pass


# =============================================================================
# Media Errors
# =============================================================================

class MediaError(EchoPostError):
    """Base exception for media source registry errors."""
    pass


class SourceNotFound(MediaError):
    """Raised when a media source id or path does not exist."""
    pass


class DuplicateSource(MediaError):
    """Raised when a media source with the same path is already registered."""
    pass


class ProtectedSource(MediaError):
    """Raised when trying to remove one of the default media sources."""
    pass


# =============================================================================
# Social Media Errors
# =============================================================================

class SocialMediaError(EchoPostError):
    """Base exception for social media platform errors."""
    pass


class AuthenticationError(SocialMediaError):
    """Raised when authentication with a social media platform fails."""
    pass


class PostingError(SocialMediaError):
    """Raised when posting to a social media platform fails."""
    pass


class MediaUploadError(SocialMediaError):
    """Raised when media upload fails."""
    pass


# =============================================================================
# Database Errors
# =============================================================================

class DatabaseError(EchoPostError):
    """Base exception for database-related errors."""
    pass


class ConnectionError(DatabaseError):
    """Raised when database connection fails."""
    pass


class QueryError(DatabaseError):
    """Raised when a database query fails."""
    pass


class DuplicatePost(QueryError):
    """Raised when saving a post whose id is already stored."""
    pass
