"""
Transcription Service Module

Sends recorded audio to a Whisper-compatible speech-to-text endpoint and
returns the transcript text.
"""

import os
from typing import Optional

import requests

from config import settings
from utils.exceptions import TranscriptionFailed
from utils.logger import get_logger

logger = get_logger(__name__)


class TranscriptionService:
    """Speech-to-text client for the OpenAI audio transcription API."""

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None,
                 language: Optional[str] = None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        if not self.api_key:
            raise ValueError("Missing required OPENAI_API_KEY")
        self.api_url = api_url or settings.TRANSCRIPTION_API_URL
        self.model = model or settings.TRANSCRIPTION_MODEL
        self.timeout = timeout or settings.TRANSCRIPTION_TIMEOUT
        self.language = language

    def transcribe(self, audio_path: str) -> str:
        """
        Transcribe an audio file.

        Args:
            audio_path: Path to the recorded audio.

        Returns:
            str: The transcript, stripped. May be empty; the caller decides
            whether an empty transcript is an error.

        Raises:
            TranscriptionFailed: On unreadable audio, network errors, quota
            errors or a malformed reply.
        """
        data = {"model": self.model, "response_format": "json"}
        if self.language:
            data["language"] = self.language

        try:
            with open(audio_path, "rb") as audio_file:
                response = requests.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    files={"file": (os.path.basename(audio_path), audio_file, "audio/m4a")},
                    data=data,
                    timeout=self.timeout,
                )
        except OSError as e:
            raise TranscriptionFailed(f"Could not read audio file {audio_path}: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Transcription request failed: {e}")
            raise TranscriptionFailed(f"Transcription request failed: {e}") from e

        if response.status_code == 429:
            raise TranscriptionFailed("Transcription quota exceeded")
        if response.status_code >= 400:
            logger.error(f"Transcription API returned HTTP {response.status_code}: {response.text[:200]}")
            raise TranscriptionFailed(f"Transcription API returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TranscriptionFailed("Transcription API returned malformed JSON") from e

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise TranscriptionFailed("Transcription API reply has no text")

        logger.info(f"Transcribed {os.path.basename(audio_path)} ({len(text.strip())} chars)")
        return text.strip()
