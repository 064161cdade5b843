"""
wav_reader.py

Read back recordings written by wav_encoder and tabulate them.

Only the canonical 44-byte header layout is accepted: RIFF, a 16-byte PCM
fmt chunk, 16 bits per sample, and the data chunk straight after it.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd
import slab

from wav_encoder import (
    AudioBuffer,
    WavFormatError,
    BITS_PER_SAMPLE,
    BYTES_PER_SAMPLE,
    FMT_CHUNK_SIZE,
    HEADER_SIZE,
    PCM_FORMAT,
    PCM_MAX,
)

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s] %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)

_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")

RECORDING_COLUMNS = [
    "sound_filename",
    "channel_count",
    "sample_rate",
    "n_frames",
    "duration",
    "rms",
    "peak",
]


@dataclass(frozen=True)
class WavHeader:
    riff_size: int
    fmt_size: int
    audio_format: int
    channel_count: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int

    @property
    def n_frames(self) -> int:
        return self.data_size // self.block_align

    @property
    def duration(self) -> float:
        return self.n_frames / self.sample_rate


def read_header(data: bytes) -> WavHeader:
    """
    Parse and check the canonical header at the start of data.
    """
    if len(data) < HEADER_SIZE:
        raise WavFormatError(f"Need at least {HEADER_SIZE} bytes for a WAV header, got {len(data)}")
    (riff, riff_size, wave, fmt, fmt_size, audio_format, channel_count, sample_rate,
     byte_rate, block_align, bits_per_sample, data_tag, data_size) = _HEADER_STRUCT.unpack_from(data)

    if (riff, wave, fmt, data_tag) != (b"RIFF", b"WAVE", b"fmt ", b"data"):
        raise WavFormatError(f"Unexpected chunk tags: {riff!r} {wave!r} {fmt!r} {data_tag!r}")
    if fmt_size != FMT_CHUNK_SIZE or audio_format != PCM_FORMAT:
        raise WavFormatError(f"Only plain PCM is supported (fmt size {fmt_size}, format {audio_format})")
    if bits_per_sample != BITS_PER_SAMPLE:
        raise WavFormatError(f"Only {BITS_PER_SAMPLE}-bit samples are supported, got {bits_per_sample}")
    if channel_count == 0 or sample_rate == 0:
        raise WavFormatError("Channel count and sample rate must be non-zero")
    if block_align != channel_count * BYTES_PER_SAMPLE:
        raise WavFormatError(f"Block align {block_align} does not match {channel_count} channels")
    if data_size != len(data) - HEADER_SIZE:
        raise WavFormatError(
            f"Data chunk claims {data_size} bytes but {len(data) - HEADER_SIZE} follow the header"
        )
    if data_size % block_align:
        raise WavFormatError(f"Data chunk of {data_size} bytes is not a whole number of frames")
    if riff_size != HEADER_SIZE - 8 + data_size:
        raise WavFormatError(f"RIFF size {riff_size} does not match a {data_size}-byte data chunk")
    if byte_rate != sample_rate * block_align:
        raise WavFormatError(f"Byte rate {byte_rate} does not match {sample_rate} Hz x {block_align} bytes")
    return WavHeader(riff_size, fmt_size, audio_format, channel_count, sample_rate,
                     byte_rate, block_align, bits_per_sample, data_size)


def decode(data: bytes) -> AudioBuffer:
    """Decode WAV bytes back to normalized floats (int16 / 32767)."""
    header = read_header(data)
    pcm = np.frombuffer(data, dtype="<i2", offset=HEADER_SIZE)
    samples = pcm.astype(np.float32) / PCM_MAX
    return AudioBuffer(samples, header.channel_count, header.sample_rate)


def read_wav(filepath: Union[str, Path]) -> AudioBuffer:
    filepath = Path(filepath)
    return decode(filepath.read_bytes())


def get_recording_row(filepath: Union[str, Path]) -> dict:
    """
    Summary row for one recording. The header is checked strictly, the
    audio itself is loaded through slab.
    """
    filepath = Path(filepath)
    header = read_header(filepath.read_bytes())
    rms = peak = 0.0
    if header.n_frames:
        rec = slab.Sound(str(filepath))
        data = np.asarray(rec.data, dtype=np.float64)
        rms = float(np.sqrt(np.mean(data ** 2)))
        peak = float(np.max(np.abs(data)))
    return {
        "sound_filename": filepath.name,
        "channel_count": header.channel_count,
        "sample_rate": header.sample_rate,
        "n_frames": header.n_frames,
        "duration": header.duration,
        "rms": rms,
        "peak": peak,
    }


def scan_recordings(folder: Union[str, Path], pattern: str = "*.wav") -> pd.DataFrame:
    """
    One row per recording in folder, sorted by file name.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise NotADirectoryError(f"Not a directory: {folder}")
    rows = [get_recording_row(p) for p in sorted(folder.glob(pattern))]
    logger.info(f"Scanned {len(rows)} recordings in {folder}")
    return pd.DataFrame(rows, columns=RECORDING_COLUMNS)
