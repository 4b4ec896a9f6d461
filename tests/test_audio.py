import io

import numpy as np
import pytest
import soundfile as sf

from zenhanzi import audio
from zenhanzi.audio import MicrophoneRecorder, RecorderState


def fake_sounddevice(samples, fail=False):
    class FakeStream:
        def __init__(self, samplerate, channels, dtype, callback):
            if fail:
                raise RuntimeError("Error querying device -1")
            self.callback = callback
            self.closed = False

        def start(self):
            block = np.zeros((samples, 1), dtype=np.int16)
            self.callback(block, samples, None, None)

        def stop(self):
            pass

        def close(self):
            self.closed = True

    class FakeModule:
        InputStream = FakeStream

    return FakeModule


@pytest.fixture
def mic(monkeypatch):
    def install(samples=16000, fail=False):
        monkeypatch.setattr(audio, "sd", fake_sounddevice(samples, fail))
        monkeypatch.setattr(audio, "RECORDING_AVAILABLE", True)
        return MicrophoneRecorder()

    return install


def test_record_produces_16k_wav(mic):
    recorder = mic(samples=16000)
    assert recorder.start() == RecorderState.RECORDING
    assert recorder.is_recording

    wav = recorder.stop()
    assert recorder.state == RecorderState.RECORDED
    data, rate = sf.read(io.BytesIO(wav))
    assert rate == 16000
    assert len(data) == 16000


def test_too_short_recording_is_discarded(mic):
    recorder = mic(samples=100)
    recorder.start()
    assert recorder.stop() is None
    assert recorder.state == RecorderState.IDLE
    assert "No audio recorded" in recorder.error


def test_denied_microphone(mic):
    recorder = mic(fail=True)
    assert recorder.start() == RecorderState.PERMISSION_DENIED
    assert "denied" in recorder.error
    assert recorder.stop() is None


def test_no_backend(monkeypatch):
    monkeypatch.setattr(audio, "RECORDING_AVAILABLE", False)
    recorder = MicrophoneRecorder()
    assert recorder.state == RecorderState.UNAVAILABLE
    assert recorder.start() == RecorderState.UNAVAILABLE


def test_reset_forgets_recording(mic):
    recorder = mic()
    recorder.start()
    recorder.stop()
    recorder.reset()
    assert recorder.audio is None
    assert recorder.state == RecorderState.IDLE
