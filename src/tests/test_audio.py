"""
Tests for audio decoding and routing.
"""

import io
import os
import wave

import numpy as np
import pytest
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from conftest import FakeSource
from dubstudio.audio import AudioEngine, DecodedAudio, decode_audio_bytes
from dubstudio.errors import MediaDecodeError


def _wav_bytes(frames=1600, rate=16000, channels=1, value=1000):
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(rate)
        w.writeframes(np.full(frames * channels, value, dtype="<i2").tobytes())
    return buf.getvalue()


@pytest.fixture
def no_container_decoder(monkeypatch):
    def refuse(cls, *args, **kwargs):
        raise CouldntDecodeError("not a container")

    monkeypatch.setattr(AudioSegment, "from_file", classmethod(refuse))


def test_decode_wav_container():
    audio = decode_audio_bytes(_wav_bytes(frames=1600, rate=16000))
    assert audio.sample_rate == 16000
    assert audio.channel_count == 1
    assert audio.frame_count == 1600
    assert audio.duration == pytest.approx(0.1)
    assert audio.samples[0][0] == pytest.approx(1000 / 32768)


def test_decode_stereo_wav_deinterleaves():
    audio = decode_audio_bytes(_wav_bytes(frames=10, channels=2))
    assert audio.samples.shape == (2, 10)


def test_raw_pcm_fallback(no_container_decoder):
    pcm = np.array([0, 16384, -32768, 32767] * 600, dtype="<i2").tobytes()
    audio = decode_audio_bytes(pcm)
    assert audio.sample_rate == 24000
    assert audio.channel_count == 1
    assert audio.frame_count == 2400
    assert audio.samples[0][1] == pytest.approx(0.5)
    assert audio.samples[0][2] == pytest.approx(-1.0)


def test_raw_pcm_partial_frame_rejected(no_container_decoder):
    with pytest.raises(MediaDecodeError):
        decode_audio_bytes(b"\x00\x01\x02")


def test_empty_payload_rejected():
    with pytest.raises(MediaDecodeError):
        decode_audio_bytes(b"")


def test_to_segment_round_trips_samples():
    audio = DecodedAudio(sample_rate=8000, samples=np.array([[0.0, 0.5, -1.0]], dtype=np.float32))
    segment = audio.to_segment()
    assert segment.frame_rate == 8000
    assert list(segment.get_array_of_samples()) == [0, 16383, -32768]


def test_override_route_mutes_source():
    source = FakeSource(has_audio=True)
    dub = DecodedAudio(sample_rate=24000, samples=np.zeros(240, dtype=np.float32))
    with AudioEngine() as engine:
        route = engine.select_audio_source(source, dub)
        assert route.kind == "override"
        assert route.input_args() == ["-i", route.path]
        assert source.info.path not in route.input_args()
        assert os.path.exists(route.path)
        assert engine.open_routes == 1

        path = route.path
        route.release()
        route.release()
        assert not os.path.exists(path)
        assert engine.open_routes == 0


def test_source_route_and_silent_source():
    with AudioEngine() as engine:
        route = engine.select_audio_source(FakeSource(has_audio=True), None)
        assert route.kind == "source"
        assert route.map_args(1) == ["-map", "1:a:0"]

        silent = engine.select_audio_source(FakeSource(has_audio=False), None)
        assert silent.kind == "none"
        assert not silent.has_audio
        assert silent.map_args(1) == []
        assert engine.open_routes == 2
    assert engine.open_routes == 0


def test_engine_close_removes_owned_scratch_dir():
    engine = AudioEngine()
    engine.select_audio_source(FakeSource(), DecodedAudio(sample_rate=8000, samples=np.zeros(80)))
    scratch = engine.scratch_dir
    engine.close()
    assert not os.path.exists(scratch)
