"""
Codec and resampler tests.
"""

import struct

import pytest

from voice_receptionist.src.audio_utils import (
    AudioEncoding,
    AudioFrame,
    base64_decode,
    base64_encode,
    convert_frame,
    mulaw_to_pcm,
    pcm_to_mulaw,
    resample_pcm,
)


def _pcm(*samples: int) -> bytes:
    return struct.pack(f"<{len(samples)}h", *samples)


def test_mulaw_round_trip_only_changes_negative_zero():
    every_code = bytes(range(256))
    restored = pcm_to_mulaw(mulaw_to_pcm(every_code))

    mismatches = [i for i in range(256) if restored[i] != every_code[i]]
    assert mismatches == [0x7F]
    assert restored[0x7F] == 0xFF


def test_mulaw_decode_known_values():
    samples = struct.unpack("<3h", mulaw_to_pcm(bytes([0xFF, 0x00, 0x80])))
    assert samples == (0, -32124, 32124)


def test_mulaw_encode_clips_extremes():
    assert pcm_to_mulaw(_pcm(32767, -32768)) == bytes([0x80, 0x00])


def test_pcm_to_mulaw_rejects_partial_sample():
    with pytest.raises(ValueError):
        pcm_to_mulaw(b"\x00\x01\x02")


def test_resample_same_rate_returns_input():
    pcm = _pcm(1, 2, 3, 4)
    assert resample_pcm(pcm, 8000, 8000) is pcm


def test_resample_empty_input():
    assert resample_pcm(b"", 24000, 8000) == b""


def test_downsample_24k_to_8k_length():
    pcm = _pcm(*range(300))
    assert len(resample_pcm(pcm, 24000, 8000)) == 100 * 2

    odd = _pcm(*range(301))
    assert len(resample_pcm(odd, 24000, 8000)) == 100 * 2


def test_upsample_8k_to_16k_interpolates():
    out = struct.unpack("<6h", resample_pcm(_pcm(0, 100, 200), 8000, 16000))
    assert out == (0, 50, 100, 150, 200, 200)


def test_convert_frame_pcm24k_to_mulaw8k():
    frame = AudioFrame(_pcm(*([0] * 240)), AudioEncoding.PCM16, 24000)
    converted = convert_frame(frame, AudioEncoding.MULAW, 8000)

    assert converted.encoding == AudioEncoding.MULAW
    assert converted.sample_rate == 8000
    assert converted.data == bytes([0xFF]) * 80


def test_convert_frame_noop_returns_same_frame():
    frame = AudioFrame(bytes([0xFF]) * 160)
    assert convert_frame(frame, AudioEncoding.MULAW, 8000) is frame


def test_base64_helpers():
    payload = bytes([0, 127, 255])
    assert base64_encode(payload) == "AH//"
    assert base64_decode("AH//") == payload
