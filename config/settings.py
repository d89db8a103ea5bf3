"""
Configuration Settings for EchoPost

This module centralizes all configuration settings for the EchoPost core,
including environment variables, API keys, and pipeline constants.
"""

import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# API Keys and Authentication
GOOGLE_AI_API_KEY = os.getenv("GOOGLE_AI_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# AT Protocol (BlueSky) Authentication
AT_PROTOCOL_USERNAME = os.getenv("AT_PROTOCOL_USERNAME")
AT_PROTOCOL_PASSWORD = os.getenv("AT_PROTOCOL_PASSWORD")

# Twitter API Authentication
TWITTER_API_KEY = os.getenv("TWITTER_API_KEY")
TWITTER_API_KEY_SECRET = os.getenv("TWITTER_API_KEY_SECRET")
TWITTER_ACCESS_TOKEN = os.getenv("TWITTER_ACCESS_TOKEN")
TWITTER_ACCESS_TOKEN_SECRET = os.getenv("TWITTER_ACCESS_TOKEN_SECRET")

# Database Settings (optional; the in-memory store is used when unset)
DB_SERVER = os.getenv("DB_SERVER", "")
DB_NAME = os.getenv("DB_NAME", "")
DB_USER = os.getenv("DB_USER", "")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_POST_TABLE = os.getenv("DB_POST_TABLE", "tbl_Draft_Post")

# Build connection string safely (validation happens in validate_settings())
DB_CONNECTION_STRING = (
    f"DRIVER={{ODBC Driver 18 for SQL Server}}; "
    f"SERVER={DB_SERVER}; "
    f"DATABASE={DB_NAME}; "
    f"UID={DB_USER}; "
    f"PWD={DB_PASSWORD}; "
    f"TrustServerCertificate=yes; MARS_Connection=yes;"
) if all([DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD]) else ""

# Platform Enable/Disable Settings
ENABLE_BLUESKY = _env_bool("ENABLE_BLUESKY", True)
ENABLE_TWITTER = _env_bool("ENABLE_TWITTER", True)
DEFAULT_PLATFORMS = ["bluesky", "twitter"]  # Used by the CLI when --platforms is omitted

# AI Model Settings
DEFAULT_AI_MODELS = [
    'gemini-2.0-flash',       # Good balance of capability and cost
    'gemini-2.0-flash-lite',  # If available, even more cost-effective
    'gemini-2.5-flash-lite',
    'gemini-2.5-flash'
]

# =============================================================================
# Recording Settings
# =============================================================================

RECORDING_SCRATCH_DIR = os.getenv("RECORDING_SCRATCH_DIR", tempfile.gettempdir())
RECORDING_FILE_EXTENSION = ".m4a"
RECORDING_SAMPLE_RATE = 16000        # Hz, speech-oriented
RECORDING_CHANNELS = 1               # Mono
RECORDING_BIT_RATE = 128000          # bits per second
MAX_RECORDING_SECONDS = 30.0         # Automatic stop cutoff
MIN_RECORDING_SECONDS = 0.5          # Shorter recordings are rejected
AMPLITUDE_SAMPLE_INTERVAL = 0.5      # Seconds between amplitude ticks

# Voice activity thresholds (dBFS)
SPEECH_THRESHOLD_DB = -40.0          # Above this a sample counts as voiced
SILENCE_THRESHOLD_DB = -50.0         # Below this the silence run grows
SILENCE_TICKS_BEFORE_ADVISORY = 10   # ~5 seconds at the default interval
AMPLITUDE_FLOOR_DB = -160.0          # Reported level before any sample
NORMALIZED_MIN_DB = -60.0            # Maps to 0.0 for level meters
NORMALIZED_MAX_DB = -10.0            # Maps to 1.0 for level meters

# Audio container validation
AUDIO_HEADER_BYTES = 32              # Bytes read for the signature check
AUDIO_CONTAINER_SIGNATURE = b"ftyp"  # MP4/M4A box type at offset 4
AUDIO_SUSPICIOUS_SIZE_BYTES = 5 * 1024 * 1024

# =============================================================================
# Transcription Settings
# =============================================================================

TRANSCRIPTION_API_URL = os.getenv(
    "TRANSCRIPTION_API_URL", "https://api.openai.com/v1/audio/transcriptions"
)
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
TRANSCRIPTION_TIMEOUT = 60           # Seconds

# =============================================================================
# Media Settings
# =============================================================================

MEDIA_SOURCES_FILE = os.getenv(
    "MEDIA_SOURCES_FILE", os.path.join(APP_ROOT, "media_sources.json")
)
DEFAULT_MEDIA_DIRECTORIES = [
    # (id, display name, path, enabled)
    ("default_pictures", "Pictures", os.path.join(Path.home(), "Pictures"), True),
    ("default_videos", "Videos", os.path.join(Path.home(), "Videos"), True),
    ("default_downloads", "Downloads", os.path.join(Path.home(), "Downloads"), False),
]
MEDIA_SCAN_MAX_DEPTH = 3             # Directory levels below each source
MEDIA_CANDIDATE_LIMIT = 200          # Upper bound on candidates returned

# =============================================================================
# Publishing Settings
# =============================================================================

PUBLISH_TIMEOUT_SECONDS = None       # None defers to each adapter's own timeout
STATUS_WRITE_ATTEMPTS = 3            # Attempts for the terminal posted/failed write
STATUS_WRITE_RETRY_DELAY = 0.5       # Seconds, doubled after each failure
BLUESKY_IMAGE_LIMIT = 4              # Images per BlueSky post
TWITTER_MEDIA_LIMIT = 4              # Media items per tweet

# Re-exported for callers that only import settings
from config.validators import ConfigurationError, validate_settings, get_config_summary  # noqa: E402,F401
