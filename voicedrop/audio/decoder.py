"""
WAV sample decoding for the transcription engine.

Recordings are 16-bit PCM WAV files with the canonical 44 byte header.
The engine wants one float per frame in [-1.0, 1.0].
"""

from pathlib import Path
from typing import Union

import numpy as np

from ..errors import DecodeError

WAV_HEADER_SIZE = 44
SAMPLE_WIDTH = 2
INT16_SCALE = 32767.0


def decode_samples(container: bytes) -> np.ndarray:
    """
    Convert a 16-bit PCM WAV container into normalized float samples.

    Args:
        container: Complete WAV file bytes, header included

    Returns:
        float32 array with one sample per frame, each in [-1.0, 1.0].
        A header-only container yields an empty array.

    Raises:
        DecodeError: If the header is missing or the sample data is cut
            mid-frame.
    """
    if len(container) < WAV_HEADER_SIZE:
        raise DecodeError(
            f"Audio container truncated: {len(container)} bytes is shorter than the "
            f"{WAV_HEADER_SIZE} byte header"
        )
    if container[0:4] != b"RIFF" or container[8:12] != b"WAVE":
        raise DecodeError("Audio container is not a RIFF/WAVE file")

    body = container[WAV_HEADER_SIZE:]
    if len(body) % SAMPLE_WIDTH:
        raise DecodeError(f"Audio container truncated mid-sample ({len(body)} data bytes)")

    pcm = np.frombuffer(body, dtype="<i2").astype(np.float32)
    return np.clip(pcm / INT16_SCALE, -1.0, 1.0)


def decode_file(path: Union[str, Path]) -> np.ndarray:
    """Read a WAV file from disk and decode it; I/O failures become DecodeError."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise DecodeError(f"Could not read audio file {path}: {e}") from e
    return decode_samples(data)
