"""
Audio format conversion utilities.
G.711 mu-law <-> 16-bit PCM and linear-interpolation resampling for the
Telnyx media stream and the speech providers.
"""

import base64
import math
import sys
from array import array
from dataclasses import dataclass
from enum import Enum

MULAW_BIAS = 0x84
MULAW_CLIP = 32635
TELEPHONY_SAMPLE_RATE = 8000


class AudioEncoding(str, Enum):
    """Encodings understood by the codec."""
    MULAW = "mulaw"
    PCM16 = "linear16"


@dataclass(frozen=True)
class AudioFrame:
    """A chunk of audio with its encoding and sample rate."""
    data: bytes
    encoding: AudioEncoding = AudioEncoding.MULAW
    sample_rate: int = TELEPHONY_SAMPLE_RATE


def _build_decode_table() -> array:
    table = array("h", [0] * 256)
    for i in range(256):
        mulaw = ~i & 0xFF
        sign = mulaw & 0x80
        exponent = (mulaw >> 4) & 0x07
        mantissa = mulaw & 0x0F
        magnitude = (((mantissa << 3) + MULAW_BIAS) << exponent) - MULAW_BIAS
        table[i] = -magnitude if sign else magnitude
    return table


_MULAW_DECODE_TABLE = _build_decode_table()


def _to_samples(pcm: bytes) -> array:
    """Read little-endian int16 samples."""
    samples = array("h")
    samples.frombytes(pcm)
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def _to_bytes(samples: array) -> bytes:
    """Write int16 samples as little-endian bytes."""
    if sys.byteorder == "big":
        samples = array("h", samples)
        samples.byteswap()
    return samples.tobytes()


def mulaw_to_pcm(data: bytes) -> bytes:
    """Decode mu-law encoded audio to 16-bit little-endian PCM."""
    return _to_bytes(array("h", (_MULAW_DECODE_TABLE[b] for b in data)))


def _encode_sample(sample: int) -> int:
    sign = (sample >> 8) & 0x80
    if sign:
        sample = -sample
    if sample > MULAW_CLIP:
        sample = MULAW_CLIP
    sample += MULAW_BIAS

    exponent = 7
    mask = 0x4000
    while exponent > 0:
        if sample & mask:
            break
        exponent -= 1
        mask >>= 1

    mantissa = (sample >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def pcm_to_mulaw(pcm: bytes) -> bytes:
    """
    Encode 16-bit little-endian PCM to mu-law.

    The two zero codes (0x7F and 0xFF) both decode to 0 and re-encode to 0xFF,
    so a decode/encode round trip is lossless for every other byte.

    Raises:
        ValueError: if the buffer holds a partial sample
    """
    if len(pcm) % 2:
        raise ValueError(f"PCM16 buffer must have an even length, got {len(pcm)} bytes")
    return bytes(_encode_sample(s) for s in _to_samples(pcm))


def resample_pcm(pcm: bytes, from_rate: int, to_rate: int) -> bytes:
    """
    Resample 16-bit PCM from one sample rate to another.

    Args:
        pcm: Raw little-endian PCM16 bytes
        from_rate: Source sample rate
        to_rate: Target sample rate

    Returns:
        The input object itself when the rates match, otherwise new PCM16 bytes
        of floor(samples / (from_rate / to_rate)) samples
    """
    if from_rate == to_rate:
        return pcm
    if not pcm:
        return b""

    ratio = from_rate / to_rate
    source = _to_samples(pcm)
    last = len(source) - 1
    output_samples = math.floor(len(source) / ratio)
    output = array("h", [0] * output_samples)

    for i in range(output_samples):
        position = i * ratio
        index = math.floor(position)
        frac = position - index
        s0 = source[min(index, last)]
        s1 = source[min(index + 1, last)]
        sample = round(s0 + (s1 - s0) * frac)
        output[i] = max(-32768, min(32767, sample))

    return _to_bytes(output)


def convert_frame(frame: AudioFrame, encoding: AudioEncoding, sample_rate: int) -> AudioFrame:
    """Convert a frame to the requested encoding and sample rate."""
    if frame.encoding == encoding and frame.sample_rate == sample_rate:
        return frame

    pcm = mulaw_to_pcm(frame.data) if frame.encoding == AudioEncoding.MULAW else frame.data
    pcm = resample_pcm(pcm, frame.sample_rate, sample_rate)
    data = pcm_to_mulaw(pcm) if encoding == AudioEncoding.MULAW else pcm
    return AudioFrame(data=data, encoding=encoding, sample_rate=sample_rate)


def base64_decode(data: str) -> bytes:
    """Decode base64 encoded audio data."""
    return base64.b64decode(data)


def base64_encode(data: bytes) -> str:
    """Encode audio data to base64."""
    return base64.b64encode(data).decode("utf-8")
