"""
Configuration Validation for EchoPost

This module contains configuration validation logic.
Kept separate from settings.py so the settings module stays declarative.
"""

from utils.exceptions import ConfigurationError


def validate_settings(require_services: bool = True):
    """
    Validate that all required settings are properly configured.

    Args:
        require_services: When True, the transcription and command parser
            credentials must be present (the full voice pipeline).

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings
    from utils.logger import get_logger

    logger = get_logger(__name__)
    errors = []

    if require_services:
        required_vars = [
            ("GOOGLE_AI_API_KEY", settings.GOOGLE_AI_API_KEY),
            ("OPENAI_API_KEY", settings.OPENAI_API_KEY),
        ]
        for var_name, var_value in required_vars:
            if not var_value:
                errors.append(f"Missing required environment variable: {var_name}")

    # Database is optional, but a partial configuration is a mistake
    db_values = [settings.DB_SERVER, settings.DB_NAME, settings.DB_USER, settings.DB_PASSWORD]
    if any(db_values) and not all(db_values):
        errors.append("Database settings are incomplete. Set all of DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD or none.")

    if not settings.ENABLE_BLUESKY and not settings.ENABLE_TWITTER:
        logger.warning("Both ENABLE_BLUESKY and ENABLE_TWITTER are disabled. "
                       "No platform will have an automatic publish adapter.")

    bluesky_configured = bool(settings.AT_PROTOCOL_USERNAME and settings.AT_PROTOCOL_PASSWORD)
    twitter_configured = all([
        settings.TWITTER_API_KEY,
        settings.TWITTER_API_KEY_SECRET,
        settings.TWITTER_ACCESS_TOKEN,
        settings.TWITTER_ACCESS_TOKEN_SECRET
    ])

    if settings.ENABLE_BLUESKY and not bluesky_configured:
        errors.append("ENABLE_BLUESKY is true but BlueSky credentials are not configured. "
                      "Please configure AT_PROTOCOL_USERNAME and AT_PROTOCOL_PASSWORD.")

    if settings.ENABLE_TWITTER and not twitter_configured:
        errors.append("ENABLE_TWITTER is true but Twitter credentials are not configured. "
                      "Please configure the four Twitter OAuth 1.0a values.")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("RECORDING_SAMPLE_RATE", settings.RECORDING_SAMPLE_RATE, 8000, 48000),
        ("MAX_RECORDING_SECONDS", settings.MAX_RECORDING_SECONDS, 1, 600),
        ("MIN_RECORDING_SECONDS", settings.MIN_RECORDING_SECONDS, 0.0, 10.0),
        ("AMPLITUDE_SAMPLE_INTERVAL", settings.AMPLITUDE_SAMPLE_INTERVAL, 0.01, 5.0),
        ("SPEECH_THRESHOLD_DB", settings.SPEECH_THRESHOLD_DB, -160.0, 0.0),
        ("SILENCE_THRESHOLD_DB", settings.SILENCE_THRESHOLD_DB, -160.0, 0.0),
        ("MEDIA_SCAN_MAX_DEPTH", settings.MEDIA_SCAN_MAX_DEPTH, 0, 20),
        ("MEDIA_CANDIDATE_LIMIT", settings.MEDIA_CANDIDATE_LIMIT, 1, 10000),
        ("STATUS_WRITE_ATTEMPTS", settings.STATUS_WRITE_ATTEMPTS, 1, 10),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    if settings.MIN_RECORDING_SECONDS >= settings.MAX_RECORDING_SECONDS:
        errors.append("MIN_RECORDING_SECONDS must be lower than MAX_RECORDING_SECONDS")

    if settings.SILENCE_THRESHOLD_DB >= settings.SPEECH_THRESHOLD_DB:
        errors.append("SILENCE_THRESHOLD_DB must be lower than SPEECH_THRESHOLD_DB")

    # Validate timeout values are positive
    timeout_settings = [
        ("TRANSCRIPTION_TIMEOUT", settings.TRANSCRIPTION_TIMEOUT),
    ]
    if settings.PUBLISH_TIMEOUT_SECONDS is not None:
        timeout_settings.append(("PUBLISH_TIMEOUT_SECONDS", settings.PUBLISH_TIMEOUT_SECONDS))

    for name, value in timeout_settings:
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    # Import settings here to avoid circular imports
    from config import settings

    return {
        "platforms": {
            "bluesky": {
                "enabled": settings.ENABLE_BLUESKY,
                "configured": bool(settings.AT_PROTOCOL_USERNAME and settings.AT_PROTOCOL_PASSWORD),
            },
            "twitter": {
                "enabled": settings.ENABLE_TWITTER,
                "configured": bool(settings.TWITTER_API_KEY and settings.TWITTER_ACCESS_TOKEN),
            },
            "default_platforms": settings.DEFAULT_PLATFORMS,
        },
        "services": {
            "parser_configured": bool(settings.GOOGLE_AI_API_KEY),
            "transcription_configured": bool(settings.OPENAI_API_KEY),
            "transcription_model": settings.TRANSCRIPTION_MODEL,
        },
        "database": {
            "server": settings.DB_SERVER[:20] + "..." if settings.DB_SERVER and len(settings.DB_SERVER) > 20 else settings.DB_SERVER,
            "database": settings.DB_NAME,
            "enabled": bool(settings.DB_CONNECTION_STRING),
        },
        "recording": {
            "max_seconds": settings.MAX_RECORDING_SECONDS,
            "min_seconds": settings.MIN_RECORDING_SECONDS,
            "speech_threshold_db": settings.SPEECH_THRESHOLD_DB,
        },
        "media": {
            "sources_file": str(settings.MEDIA_SOURCES_FILE),
            "candidate_limit": settings.MEDIA_CANDIDATE_LIMIT,
        }
    }
