"""
Recording Service Module

This module owns the microphone capture lifecycle for a voice command:

    idle -> recording -> processing -> ready -> idle

with an error path from every non-idle state back to idle. While recording,
a background task samples the signal level and a countdown stops capture
automatically at the maximum duration. Both are owned by the session and
torn down on every exit path.
"""

import os
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Callable

from config import settings
from services.protocols import AudioRecorder, AudioCaptureConfig, RecordingEnvironment, Transcriber
from utils.exceptions import (
    EchoPostError, PermissionDenied, EnvironmentUnavailable, CaptureStartFailed,
    NoSpeechDetected, RecordingTooShort, InvalidAudioAsset, EmptyTranscription,
    TranscriptionFailed, AlreadyInProgress
)
from utils.helpers import utc_now, ensure_dir_exists
from utils.logger import get_logger

logger = get_logger(__name__)


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    READY = "ready"


@dataclass(frozen=True)
class RecordingSession:
    """Read-only view of the current capture session."""
    state: RecordingState
    started_at: datetime
    elapsed_seconds: float
    max_amplitude_observed: float
    speech_observed: bool
    silence_advisory: bool
    audio_path: str


class AmplitudeMonitor:
    """
    Classifies sampled signal levels as speech or silence.

    Levels are dBFS values (0 is full scale, more negative is quieter).
    A sample above the speech threshold marks the session as voiced and
    resets the silence run; a sample below the silence threshold extends
    the run. A long run before any speech raises the silence advisory,
    which is informational only.
    """

    def __init__(self,
                 speech_threshold_db: float = settings.SPEECH_THRESHOLD_DB,
                 silence_threshold_db: float = settings.SILENCE_THRESHOLD_DB,
                 silence_ticks_before_advisory: int = settings.SILENCE_TICKS_BEFORE_ADVISORY,
                 floor_db: float = settings.AMPLITUDE_FLOOR_DB,
                 normalized_min_db: float = settings.NORMALIZED_MIN_DB,
                 normalized_max_db: float = settings.NORMALIZED_MAX_DB):
        self.speech_threshold_db = speech_threshold_db
        self.silence_threshold_db = silence_threshold_db
        self.silence_ticks_before_advisory = silence_ticks_before_advisory
        self.floor_db = floor_db
        self.normalized_min_db = normalized_min_db
        self.normalized_max_db = normalized_max_db
        self.reset()

    def reset(self) -> None:
        self.current_db = self.floor_db
        self.max_db = self.floor_db
        self.sample_count = 0
        self.speech_observed = False
        self.silence_run = 0
        self._sum_db = 0.0

    def record(self, level_db: float) -> None:
        """Apply one amplitude sample."""
        self.current_db = level_db
        if level_db > self.max_db:
            self.max_db = level_db

        self.sample_count += 1
        self._sum_db += level_db

        if level_db > self.speech_threshold_db:
            self.speech_observed = True
            self.silence_run = 0
        elif level_db < self.silence_threshold_db:
            self.silence_run += 1

    @property
    def average_db(self) -> float:
        """Mean level over the session; diagnostics only."""
        if not self.sample_count:
            return self.floor_db
        return self._sum_db / self.sample_count

    @property
    def silence_advisory(self) -> bool:
        return not self.speech_observed and self.silence_run >= self.silence_ticks_before_advisory

    @property
    def normalized_level(self) -> float:
        """Current level mapped onto 0.0-1.0 for level meters."""
        span = self.normalized_max_db - self.normalized_min_db
        value = (self.current_db - self.normalized_min_db) / span
        return max(0.0, min(1.0, value))


class _PeriodicTask:
    """Runs a callback every `interval` seconds on a daemon thread until closed."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str):
        self._interval = interval
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self):
        while not self._stop_event.wait(self._interval):
            try:
                self._callback()
            except Exception as e:
                logger.error(f"{self._thread.name} tick failed: {e}", exc_info=True)

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        self._stop_event.set()
        # An auto-stop runs on this thread, so it must not join itself
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=self._interval + 1.0)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()


class _Countdown:
    """One-shot timer that fires a callback unless closed first."""

    def __init__(self, seconds: float, callback: Callable[[], None], name: str):
        self._timer = threading.Timer(seconds, callback)
        self._timer.name = name
        self._timer.daemon = True

    def __enter__(self):
        self._timer.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._timer.cancel()
        return False


class LocalRecordingEnvironment:
    """
    RecordingEnvironment backed by the local filesystem.

    Microphone permission is owned by the host application; this class only
    reports what it was told.
    """

    def __init__(self, scratch_dir: Optional[str] = None, microphone_granted: bool = True):
        self.scratch_dir = scratch_dir or settings.RECORDING_SCRATCH_DIR
        self.microphone_granted = microphone_granted

    def has_microphone_permission(self) -> bool:
        return self.microphone_granted

    def has_writable_scratch_space(self) -> bool:
        try:
            ensure_dir_exists(self.scratch_dir)
        except OSError as e:
            logger.error(f"Cannot create scratch directory {self.scratch_dir}: {e}")
            return False
        return os.access(self.scratch_dir, os.W_OK)


class RecordingService:
    """
    Recording state machine.

    All state transitions happen under one lock. Long-running work (the
    recorder stop call, validation, transcription) runs outside the lock;
    a stopping flag keeps stop() single-flight and a generation counter
    lets a cancel discard an in-flight transcription.
    """

    def __init__(self,
                 recorder: AudioRecorder,
                 environment: RecordingEnvironment,
                 transcriber: Transcriber,
                 scratch_dir: Optional[str] = None,
                 max_duration: Optional[float] = None,
                 min_duration: Optional[float] = None,
                 sample_interval: Optional[float] = None,
                 monitor: Optional[AmplitudeMonitor] = None,
                 capture_config: Optional[AudioCaptureConfig] = None,
                 clock: Callable[[], float] = time.monotonic,
                 start_timers: bool = True,
                 on_auto_stop: Optional[Callable[[Optional[str], Optional[Exception]], None]] = None,
                 on_silence_advisory: Optional[Callable[[], None]] = None):
        """
        Initialize the recording service.

        Args:
            recorder: The capture sink.
            environment: Permission and storage checks.
            transcriber: Speech-to-text collaborator.
            scratch_dir: Where audio files are written.
            max_duration: Automatic stop cutoff in seconds.
            min_duration: Shortest accepted recording in seconds.
            sample_interval: Seconds between amplitude samples.
            monitor: Amplitude classifier (a fresh one by default).
            capture_config: Encoding profile passed to the recorder.
            clock: Monotonic clock used for the elapsed duration.
            start_timers: When False no background threads are started and the
                caller drives tick() itself.
            on_auto_stop: Called with (transcript, error) after an automatic stop.
            on_silence_advisory: Called once per session when the silence advisory trips.
        """
        self.recorder = recorder
        self.environment = environment
        self.transcriber = transcriber
        self.scratch_dir = scratch_dir or settings.RECORDING_SCRATCH_DIR
        self.max_duration = max_duration if max_duration is not None else settings.MAX_RECORDING_SECONDS
        self.min_duration = min_duration if min_duration is not None else settings.MIN_RECORDING_SECONDS
        self.sample_interval = sample_interval if sample_interval is not None else settings.AMPLITUDE_SAMPLE_INTERVAL
        self.monitor = monitor or AmplitudeMonitor()
        self.capture_config = capture_config or AudioCaptureConfig()
        self.clock = clock
        self.start_timers = start_timers
        self.on_auto_stop = on_auto_stop
        self.on_silence_advisory = on_silence_advisory

        self._lock = threading.RLock()
        self._state = RecordingState.IDLE
        self._starting = False
        self._stopping = False
        self._disposed = False
        self._generation = 0
        self._timers: Optional[ExitStack] = None
        self._sampler: Optional[_PeriodicTask] = None

        self._audio_path: Optional[str] = None
        self._started_at: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None
        self._elapsed: float = 0.0

        self.transcript: Optional[str] = None
        self.pending_audio_path: Optional[str] = None  # kept after a transcription failure
        self.last_error: Optional[Exception] = None

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_sampling(self) -> bool:
        sampler = self._sampler
        return sampler is not None and sampler.is_running

    @property
    def normalized_level(self) -> float:
        return self.monitor.normalized_level

    @property
    def silence_advisory(self) -> bool:
        return self.monitor.silence_advisory

    @property
    def session(self) -> Optional[RecordingSession]:
        """Snapshot of the active session, or None while idle."""
        with self._lock:
            if self._state == RecordingState.IDLE or self._started_at is None:
                return None
            elapsed = self._elapsed
            if self._state == RecordingState.RECORDING and self._started_monotonic is not None:
                elapsed = self.clock() - self._started_monotonic
            return RecordingSession(
                state=self._state,
                started_at=self._started_at,
                elapsed_seconds=elapsed,
                max_amplitude_observed=self.monitor.max_db,
                speech_observed=self.monitor.speech_observed,
                silence_advisory=self.monitor.silence_advisory,
                audio_path=self._audio_path or "",
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Start capturing a voice command.

        Returns:
            bool: True if capture started, False if a start or recording was
            already in flight (no-op).

        Raises:
            AlreadyInProgress: If a previous recording is still processing or ready.
            PermissionDenied: If microphone permission has not been granted.
            EnvironmentUnavailable: If the scratch location is not writable.
            CaptureStartFailed: If the recorder cannot be started.
        """
        with self._lock:
            if self._disposed:
                raise CaptureStartFailed("Recording service has been disposed")
            if self._starting or self._state == RecordingState.RECORDING:
                logger.debug("start() ignored: recording already starting or in progress")
                return False
            if self._state != RecordingState.IDLE:
                raise AlreadyInProgress(
                    f"Cannot start recording while {self._state.value}; stop() or consume_transcript() first"
                )
            self._starting = True

        try:
            if not self.environment.has_microphone_permission():
                raise PermissionDenied("Microphone permission is required to record voice commands")
            if not self.environment.has_writable_scratch_space():
                raise EnvironmentUnavailable(f"Scratch directory is not writable: {self.scratch_dir}")

            self._discard_pending_audio()
            path = os.path.join(
                self.scratch_dir,
                f"recording_{int(time.time() * 1000)}{self.capture_config.file_extension}"
            )
            try:
                self.recorder.start(path, self.capture_config)
            except Exception as e:
                logger.error(f"Failed to start audio capture: {e}")
                self._delete_file(path)
                raise CaptureStartFailed(f"Failed to start recording: {e}") from e

            with self._lock:
                self.monitor.reset()
                self.transcript = None
                self.last_error = None
                self._audio_path = path
                self._started_at = utc_now()
                self._started_monotonic = self.clock()
                self._elapsed = 0.0
                self._state = RecordingState.RECORDING
                self._start_session_timers()

            logger.info(f"Recording started: {path}")
            return True
        finally:
            with self._lock:
                self._starting = False

    def stop(self) -> Optional[str]:
        """
        Stop the current recording and transcribe it.

        From idle this is a no-op. From processing or ready it cancels the
        pending result and returns to idle.

        Returns:
            Optional[str]: The transcript after a successful stop, otherwise None.

        Raises:
            NoSpeechDetected: If no sample crossed the speech threshold.
            RecordingTooShort: If the recording is below the minimum duration.
            InvalidAudioAsset: If the audio file is missing, empty or malformed.
            TranscriptionFailed: If the transcription service fails (the audio is
                kept for retry_transcription()).
        """
        stop_time = self.clock()

        with self._lock:
            if self._state == RecordingState.IDLE:
                return None
            if self._state in (RecordingState.PROCESSING, RecordingState.READY):
                logger.info(f"stop() while {self._state.value}: discarding pending result")
                self._cancel_locked()
                return None
            if self._stopping:
                logger.debug("stop() ignored: stop already in progress")
                return None
            self._stopping = True
            path = self._audio_path
            started = self._started_monotonic if self._started_monotonic is not None else stop_time
            duration = stop_time - started
            speech_observed = self.monitor.speech_observed
            generation = self._generation

        try:
            try:
                recorded_path = self.recorder.stop()
            finally:
                self._stop_session_timers()

            path = recorded_path or path
            with self._lock:
                self._elapsed = duration
                self._audio_path = path

            logger.info(
                f"Recording stopped after {duration:.2f}s "
                f"(max {self.monitor.max_db:.1f} dBFS, avg {self.monitor.average_db:.1f} dBFS, "
                f"speech: {speech_observed})"
            )

            if not speech_observed:
                raise NoSpeechDetected("No speech detected. Try speaking louder or closer to the microphone.")
            if duration < self.min_duration:
                raise RecordingTooShort(duration, self.min_duration)
            self._validate_audio_asset(path)

        except (NoSpeechDetected, RecordingTooShort, InvalidAudioAsset) as e:
            logger.warning(f"Recording rejected: {e}")
            self._delete_file(path)
            self._fail(e)
            raise
        except Exception as e:
            logger.error(f"Failed to stop recording: {e}")
            self._delete_file(path)
            error = InvalidAudioAsset(f"Failed to finalize recording: {e}")
            self._fail(error)
            raise error from e

        with self._lock:
            self._stopping = False
            if generation != self._generation:
                return None
            self._state = RecordingState.PROCESSING

        return self._transcribe(path, generation)

    def retry_transcription(self) -> str:
        """
        Re-run transcription on the audio kept after a transcription failure.

        Returns:
            str: The transcript.

        Raises:
            InvalidAudioAsset: If there is no retained audio to transcribe.
            AlreadyInProgress: If the machine is not idle.
            TranscriptionFailed: If transcription fails again.
        """
        with self._lock:
            if self._state != RecordingState.IDLE or self._starting:
                raise AlreadyInProgress(f"Cannot retry transcription while {self._state.value}")
            path = self.pending_audio_path
            if not path or not os.path.exists(path):
                self.pending_audio_path = None
                raise InvalidAudioAsset("No recorded audio is available to retry")
            self._generation += 1
            generation = self._generation
            self._audio_path = path
            self._started_at = self._started_at or utc_now()
            self._state = RecordingState.PROCESSING

        logger.info(f"Retrying transcription for {path}")
        transcript = self._transcribe(path, generation)
        if transcript is None:
            raise TranscriptionFailed("Transcription was cancelled")
        return transcript

    def consume_transcript(self) -> Optional[str]:
        """Take the ready transcript and return to idle."""
        with self._lock:
            if self._state != RecordingState.READY:
                return None
            transcript = self.transcript
            self._reset_locked()
            return transcript

    def tick(self) -> None:
        """Sample the amplitude once and enforce the maximum duration."""
        with self._lock:
            if self._state != RecordingState.RECORDING or self._stopping:
                return

        try:
            level = self.recorder.get_amplitude()
        except Exception as e:
            logger.warning(f"Error getting amplitude: {e}")
            level = None

        advisory_tripped = False
        with self._lock:
            if self._state != RecordingState.RECORDING or self._stopping:
                return
            if level is not None:
                was_advised = self.monitor.silence_advisory
                self.monitor.record(level)
                advisory_tripped = self.monitor.silence_advisory and not was_advised
            now = self.clock()
            started = self._started_monotonic if self._started_monotonic is not None else now
            elapsed = now - started

        if advisory_tripped:
            logger.warning("Extended silence detected - no voice heard yet")
            if self.on_silence_advisory:
                self.on_silence_advisory()

        if elapsed >= self.max_duration:
            self._auto_stop()

    def dispose(self) -> None:
        """Tear down timers, stop capture and delete scratch audio. Final."""
        with self._lock:
            self._disposed = True
            was_recording = self._state == RecordingState.RECORDING
            path = self._audio_path
            self._generation += 1

        self._stop_session_timers()
        if was_recording:
            try:
                self.recorder.stop()
            except Exception as e:
                logger.warning(f"Recorder stop failed during dispose: {e}")
        self._delete_file(path)
        self._discard_pending_audio()

        with self._lock:
            self._stopping = False
            self._reset_locked()
        logger.info("Recording service disposed")

    # =========================================================================
    # Internals
    # =========================================================================

    def _transcribe(self, path: str, generation: int) -> Optional[str]:
        try:
            text = self.transcriber.transcribe(path)
            if not text or not text.strip():
                raise EmptyTranscription("Transcription service returned no text")
        except Exception as e:
            if not isinstance(e, TranscriptionFailed):
                e = TranscriptionFailed(f"Transcription failed: {e}")
            with self._lock:
                if generation != self._generation:
                    self._delete_file(path)
                    return None
                logger.error(f"Transcription failed, audio kept for retry: {e}")
                self.pending_audio_path = path
                self.last_error = e
                self._reset_locked()
            raise e

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding transcript from a cancelled recording")
                self._delete_file(path)
                return None
            self.transcript = text.strip()
            self.pending_audio_path = None
            self._state = RecordingState.READY

        self._delete_file(path)
        logger.info(f"Transcript ready ({len(self.transcript)} chars)")
        return self.transcript

    def _auto_stop(self) -> None:
        with self._lock:
            if self._state != RecordingState.RECORDING or self._stopping:
                return
        logger.info(f"Maximum recording duration ({self.max_duration}s) reached, stopping")
        transcript, error = None, None
        try:
            transcript = self.stop()
        except EchoPostError as e:
            error = e
            self.last_error = e
        # Nothing to report when a concurrent stop() or cancel won the race
        if self.on_auto_stop and (transcript is not None or error is not None):
            self.on_auto_stop(transcript, error)

    def _start_session_timers(self) -> None:
        if not self.start_timers:
            return
        stack = ExitStack()
        self._sampler = stack.enter_context(
            _PeriodicTask(self.sample_interval, self.tick, name="echopost-amplitude")
        )
        stack.enter_context(
            _Countdown(self.max_duration, self._auto_stop, name="echopost-max-duration")
        )
        self._timers = stack

    def _stop_session_timers(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, None
        if timers is not None:
            timers.close()
        with self._lock:
            self._sampler = None

    def _validate_audio_asset(self, path: Optional[str]) -> None:
        if not path or not os.path.exists(path):
            raise InvalidAudioAsset("Recording file was not created")

        size = os.path.getsize(path)
        if size == 0:
            raise InvalidAudioAsset("Recording file is empty")

        with open(path, "rb") as f:
            header = f.read(settings.AUDIO_HEADER_BYTES)
        if len(header) < 8 or header[4:8] != settings.AUDIO_CONTAINER_SIGNATURE:
            raise InvalidAudioAsset("Recording file is not a valid M4A container")

        if size > settings.AUDIO_SUSPICIOUS_SIZE_BYTES:
            logger.warning(f"Recording file is unusually large ({size} bytes)")

    def _fail(self, error: Exception) -> None:
        with self._lock:
            self.last_error = error
            self._stopping = False
            self._reset_locked()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._state == RecordingState.READY:
            self._delete_file(self._audio_path)
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._state = RecordingState.IDLE
        self.transcript = None
        self._audio_path = None
        self._started_at = None
        self._started_monotonic = None
        self._elapsed = 0.0
        self.monitor.reset()

    def _discard_pending_audio(self) -> None:
        path, self.pending_audio_path = self.pending_audio_path, None
        self._delete_file(path)

    @staticmethod
    def _delete_file(path: Optional[str]) -> None:
        if not path:
            return
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Could not delete audio file {path}: {e}")
