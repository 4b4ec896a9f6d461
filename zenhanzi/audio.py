"""
Microphone capture for sentence pronunciation practice.

Click-to-start / click-to-stop recording into a 16 kHz mono WAV, the format
Whisper prefers. A denied or missing microphone is reported as its own
state so the UI can tell it apart from "nothing recorded yet".
"""

import io
import threading
from enum import Enum
from typing import List, Optional

import numpy as np
import soundfile as sf

from .logger import logger

RECORDING_AVAILABLE = False
RECORDING_ERROR: Optional[str] = None
try:
    import sounddevice as sd
    RECORDING_AVAILABLE = True
except (ImportError, OSError) as e:
    # PortAudio missing on this machine
    sd = None
    RECORDING_ERROR = f"Audio device error: {e}. On macOS, try: brew install portaudio"
    logger.warning(f"Recording disabled: {RECORDING_ERROR}")


class RecorderState(str, Enum):
    IDLE = "IDLE"                           # nothing recorded yet
    RECORDING = "RECORDING"
    RECORDED = "RECORDED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNAVAILABLE = "UNAVAILABLE"             # no audio backend at all


class MicrophoneRecorder:
    SAMPLE_RATE = 16000
    CHANNELS = 1
    MIN_SECONDS = 0.5

    def __init__(self) -> None:
        self.state = RecorderState.IDLE if RECORDING_AVAILABLE else RecorderState.UNAVAILABLE
        self.error: Optional[str] = None if RECORDING_AVAILABLE else RECORDING_ERROR
        self.audio: Optional[bytes] = None
        self._chunks: List[np.ndarray] = []
        self._chunks_lock = threading.Lock()
        self._stream = None

    @property
    def is_recording(self) -> bool:
        return self.state == RecorderState.RECORDING

    def _callback(self, indata, frames, time, status) -> None:
        if status:
            logger.warning(f"Audio status: {status}")
        with self._chunks_lock:
            self._chunks.append(indata.copy())

    def start(self) -> RecorderState:
        """Open the microphone and start buffering audio."""
        if self.state in (RecorderState.UNAVAILABLE, RecorderState.RECORDING):
            return self.state

        with self._chunks_lock:
            self._chunks = []
        self.audio = None
        try:
            stream = sd.InputStream(
                samplerate=self.SAMPLE_RATE,
                channels=self.CHANNELS,
                dtype="int16",
                callback=self._callback,
            )
            stream.start()
        except Exception as e:
            logger.error(f"Could not open microphone: {e}")
            self.error = "Microphone access denied. Allow microphone access and try again."
            self.state = RecorderState.PERMISSION_DENIED
            return self.state

        self._stream = stream
        self.error = None
        self.state = RecorderState.RECORDING
        logger.ui("Recording started")
        return self.state

    def stop(self) -> Optional[bytes]:
        """Stop recording and return the WAV bytes, or None if too short."""
        if self.state != RecorderState.RECORDING:
            return None

        stream, self._stream = self._stream, None
        try:
            stream.stop()
        finally:
            stream.close()

        with self._chunks_lock:
            chunks, self._chunks = self._chunks, []

        if not chunks:
            return self._nothing_recorded()
        samples = np.concatenate(chunks, axis=0)
        if len(samples) < self.SAMPLE_RATE * self.MIN_SECONDS:
            return self._nothing_recorded()

        buffer = io.BytesIO()
        sf.write(buffer, samples, self.SAMPLE_RATE, format="WAV", subtype="PCM_16")
        self.audio = buffer.getvalue()
        self.state = RecorderState.RECORDED
        logger.ui(f"Recording complete ({len(samples) / self.SAMPLE_RATE:.1f}s)")
        return self.audio

    def _nothing_recorded(self) -> None:
        logger.warning("No audio recorded")
        self.error = "No audio recorded. Click the button and speak clearly."
        self.state = RecorderState.IDLE
        return None

    def reset(self) -> None:
        """Forget the last recording (e.g. when the sentence changes)."""
        if self.state == RecorderState.RECORDING:
            self.stop()
        self.audio = None
        if self.state == RecorderState.RECORDED:
            self.state = RecorderState.IDLE
