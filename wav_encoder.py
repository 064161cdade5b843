"""
wav_encoder.py

Turn a buffer of normalized float samples (microphone capture or a
synthesized clip) into a canonical 16-bit PCM RIFF/WAVE byte stream.

Layout written (all integers little-endian):
- RIFF header: "RIFF", 36 + data bytes, "WAVE"
- fmt chunk: "fmt ", 16, PCM (1), channels, sample rate, byte rate,
  block align, 16 bits
- data chunk: "data", data bytes, interleaved int16 samples

Quantization policies
---------------------
- "clamp" (default): clip to [-1, 1], scale by 32767, truncate toward zero.
- "wrap": scale by 32767 in float32, truncate toward zero and wrap into
  int16 the way an unchecked integer cast does. Only useful to reproduce
  legacy recordings byte for byte.

Files are written with the mode a plain open() would give (0666 minus the
umask), or keep the mode of the file they replace.
"""

from __future__ import annotations

import io
import logging
import os
import stat
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

import numpy as np

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s] %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


__all__ = [
    # data
    "AudioBuffer",
    # encoding
    "quantize",
    "build_header",
    "encode",
    "encode_buffer",
    "encode_to_file",
    # errors
    "WavError",
    "InvalidParameter",
    "MalformedBuffer",
    "WavFormatError",
    "WavIOError",
]

DEFAULT_SAMPLE_RATE = 44100
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
PCM_FORMAT = 1
FMT_CHUNK_SIZE = 16
HEADER_SIZE = 44
PCM_MAX = 32767

POLICIES = ("clamp", "wrap")
DEFAULT_POLICY = "clamp"

_UINT16_MAX = 0xFFFF
_UINT32_MAX = 0xFFFFFFFF


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class WavError(Exception):
    """Base class for everything raised by the WAV helpers."""


class InvalidParameter(WavError, ValueError):
    """Channel count, sample rate or policy outside the allowed range."""


class MalformedBuffer(WavError, ValueError):
    """Sample buffer that cannot be laid out as whole frames."""


class WavFormatError(WavError, ValueError):
    """Byte stream that is not a canonical 16-bit PCM WAV."""


class WavIOError(WavError, OSError):
    """Failure while persisting encoded bytes."""


# -----------------------------------------------------------------------------
# Input buffer
# -----------------------------------------------------------------------------

def _check_int(name: str, value, upper: int) -> int:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)):
        raise InvalidParameter(f"{name} must be an integer, got {value!r}")
    value = int(value)
    if value <= 0:
        raise InvalidParameter(f"{name} must be positive, got {value}")
    if value > upper:
        raise InvalidParameter(f"{name} {value} does not fit the WAV header field (max {upper})")
    return value


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """
    Interleaved float samples plus the metadata needed to lay them out.

    samples[0] is frame 0 / channel 0, samples[1] frame 0 / channel 1, etc.
    The sample array is copied to float32 and made read-only.
    """
    samples: np.ndarray
    channel_count: int = 1
    sample_rate: int = DEFAULT_SAMPLE_RATE

    def __post_init__(self):
        channel_count = _check_int("channel_count", self.channel_count, _UINT16_MAX)
        sample_rate = _check_int("sample_rate", self.sample_rate, _UINT32_MAX)
        if sample_rate * channel_count * BYTES_PER_SAMPLE > _UINT32_MAX:
            raise InvalidParameter(
                f"byte rate of {channel_count} channels at {sample_rate} Hz exceeds 32 bits"
            )
        if self.samples is None:
            raise MalformedBuffer("samples must not be None")
        samples = np.array(self.samples, dtype=np.float32).reshape(-1)
        if samples.size % channel_count != 0:
            raise MalformedBuffer(
                f"{samples.size} samples do not split into whole frames of {channel_count} channels"
            )
        if HEADER_SIZE - 8 + samples.size * BYTES_PER_SAMPLE > _UINT32_MAX:
            raise MalformedBuffer(f"{samples.size} samples exceed the 4 GiB RIFF limit")
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "channel_count", channel_count)
        object.__setattr__(self, "sample_rate", sample_rate)

    @classmethod
    def from_frames(cls, frames, sample_rate: int = DEFAULT_SAMPLE_RATE) -> "AudioBuffer":
        """Build a buffer from an (n_frames, n_channels) array; 1D input is mono."""
        frames = np.asarray(frames, dtype=np.float32)
        if frames.ndim == 1:
            frames = frames.reshape(-1, 1)
        if frames.ndim != 2:
            raise MalformedBuffer(f"frames must be 1D or 2D, got shape {frames.shape}")
        return cls(np.ascontiguousarray(frames).reshape(-1), frames.shape[1], sample_rate)

    @property
    def n_frames(self) -> int:
        return self.samples.size // self.channel_count

    @property
    def duration(self) -> float:
        return self.n_frames / self.sample_rate

    def frames(self) -> np.ndarray:
        return self.samples.reshape(-1, self.channel_count)


def _make_buffer(samples, channel_count, sample_rate, drop_partial_frame=False) -> AudioBuffer:
    if samples is None:
        raise MalformedBuffer("samples must not be None")
    if drop_partial_frame:
        channel_count = _check_int("channel_count", channel_count, _UINT16_MAX)
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        extra = samples.size % channel_count
        if extra:
            logger.warning(f"Dropping {extra} trailing samples of an incomplete frame")
            samples = samples[:samples.size - extra]
    return AudioBuffer(samples, channel_count, sample_rate)


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------

def quantize(samples: np.ndarray, policy: str = DEFAULT_POLICY) -> np.ndarray:
    """
    Convert normalized float samples into int16 values.

    "clamp" scales in double precision; "wrap" scales in float32 so the
    truncated values match the legacy cast exactly.

    NaN maps to 0 under both policies. Under "clamp" infinities saturate;
    under "wrap" they become 0 (as does anything overflowing float32 when
    scaled), as there is no sensible wrapped value.
    """
    if policy not in POLICIES:
        raise InvalidParameter(f"Unknown quantization policy {policy!r}, expected one of {POLICIES}")
    values32 = np.asarray(samples, dtype=np.float32)

    if policy == "clamp":
        values = np.nan_to_num(values32.astype(np.float64), nan=0.0, posinf=1.0, neginf=-1.0)
        scaled = np.clip(values, -1.0, 1.0) * PCM_MAX
        return np.trunc(scaled).astype(np.int16)

    # legacy recordings multiplied in single precision
    with np.errstate(over="ignore", invalid="ignore"):
        scaled32 = values32 * np.float32(PCM_MAX)
    scaled = np.where(np.isfinite(scaled32), scaled32, np.float32(0)).astype(np.float64)
    truncated = np.trunc(scaled)
    n_wrapped = int(np.count_nonzero((truncated > PCM_MAX) | (truncated < -PCM_MAX - 1)))
    if n_wrapped:
        logger.warning(f"{n_wrapped} samples out of int16 range wrapped around")
    # int64 -> int16 casts reduce modulo 2**16
    return np.fmod(truncated, 2 ** 16).astype(np.int64).astype(np.int16)


def build_header(channel_count: int, sample_rate: int, n_samples: int) -> bytes:
    """Return the 44-byte RIFF/fmt/data header for n_samples interleaved samples."""
    data_size = n_samples * BYTES_PER_SAMPLE
    byte_rate = sample_rate * channel_count * BYTES_PER_SAMPLE
    block_align = channel_count * BYTES_PER_SAMPLE

    buf = io.BytesIO()
    # RIFF header
    buf.write(b"RIFF")
    buf.write(struct.pack("<I", HEADER_SIZE - 8 + data_size))
    buf.write(b"WAVE")

    # fmt chunk
    buf.write(b"fmt ")
    buf.write(struct.pack("<I", FMT_CHUNK_SIZE))
    buf.write(struct.pack("<H", PCM_FORMAT))
    buf.write(struct.pack("<H", channel_count))
    buf.write(struct.pack("<I", sample_rate))
    buf.write(struct.pack("<I", byte_rate))
    buf.write(struct.pack("<H", block_align))
    buf.write(struct.pack("<H", BITS_PER_SAMPLE))

    # data chunk
    buf.write(b"data")
    buf.write(struct.pack("<I", data_size))
    return buf.getvalue()


def encode_buffer(buffer: AudioBuffer, policy: str = DEFAULT_POLICY) -> bytes:
    """Encode an AudioBuffer into WAV bytes. Pure, no I/O."""
    pcm = quantize(buffer.samples, policy=policy)
    header = build_header(buffer.channel_count, buffer.sample_rate, pcm.size)
    logger.debug(
        f"Encoded {buffer.n_frames} frames x {buffer.channel_count} ch "
        f"@ {buffer.sample_rate} Hz ({policy})"
    )
    return header + pcm.astype("<i2").tobytes()


def encode(
    samples: Union[Sequence[float], np.ndarray],
    channel_count: int = 1,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    policy: str = DEFAULT_POLICY,
    drop_partial_frame: bool = False,
) -> bytes:
    """
    Encode interleaved float samples into WAV bytes.

    Raises InvalidParameter for a non-positive channel count or sample rate
    and MalformedBuffer when the samples do not form whole frames, unless
    drop_partial_frame is set, in which case the trailing partial frame is
    discarded.
    """
    buffer = _make_buffer(samples, channel_count, sample_rate, drop_partial_frame)
    return encode_buffer(buffer, policy=policy)


def _target_mode(path: Path) -> int:
    # NamedTemporaryFile creates 0600; match what a plain write would leave
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def encode_to_file(
    samples: Union[Sequence[float], np.ndarray],
    channel_count: int,
    sample_rate: int,
    path: Union[str, Path],
    policy: str = DEFAULT_POLICY,
    drop_partial_frame: bool = False,
) -> Path:
    """
    Encode and write to path, creating parent folders.

    The bytes are fully encoded before anything touches the disk, then
    written to a temporary sibling file that replaces the target, so the
    target is either complete or untouched.
    """
    data = encode(samples, channel_count, sample_rate, policy=policy,
                  drop_partial_frame=drop_partial_frame)
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
        os.chmod(tmp_name, _target_mode(path))
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise WavIOError(f"Could not write WAV file {path}: {exc}") from exc
    logger.info(f"Saved: {path} ({len(data)} bytes)")
    return path
