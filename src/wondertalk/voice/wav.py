"""PCM to WAV wrapping for raw TTS output."""

from __future__ import annotations

import re
import struct

DEFAULT_SAMPLE_RATE = 24000
WAV_HEADER_SIZE = 44

_RATE = re.compile(r"rate=(\d+)")


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = 1,
    bits_per_sample: int = 16,
) -> bytes:
    """Prefix little-endian PCM samples with a 44-byte RIFF/WAVE header."""
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + len(pcm),
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        len(pcm),
    )
    return header + pcm


def is_raw_pcm(mime_type: str) -> bool:
    lower = mime_type.lower()
    return "pcm" in lower or "l16" in lower


def sample_rate_from_mime(mime_type: str, default: int = DEFAULT_SAMPLE_RATE) -> int:
    """Read ``rate=`` from a mime type such as ``audio/L16;codec=pcm;rate=24000``."""
    match = _RATE.search(mime_type)
    return int(match.group(1)) if match else default


def extension_for(content_type: str) -> str:
    lower = content_type.lower()
    if "mpeg" in lower or "mp3" in lower:
        return "mp3"
    if "wav" in lower:
        return "wav"
    return "bin"
