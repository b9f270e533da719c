"""
Audio helpers for the transcription proxy.

Browsers record WebM/Ogg and users upload anything from MP3 to FLAC, while
Google Speech-to-Text wants 16 kHz mono LINEAR16.  Conversions are performed
locally using the `pydub` library which in turn relies on `ffmpeg`.

The module also owns the audio allowlist and size cap enforced by the
upload broker.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydub import AudioSegment

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".mp3", ".m4a", ".flac", ".wav", ".mp4", ".webm", ".ogg", ".opus", ".aac", ".mpeg"}

ALLOWED_CONTENT_TYPES = (
    "audio/wav",
    "audio/mp3",
    "audio/mpeg",
    "audio/webm",
    "audio/m4a",
    "audio/ogg",
    "audio/flac",
    "audio/aac",
)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024

TARGET_SAMPLE_RATE = 16_000


def is_allowed_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    # "audio/webm;codecs=opus" is what MediaRecorder reports.
    base = content_type.split(";", 1)[0].strip().lower()
    return base in ALLOWED_CONTENT_TYPES


def write_temp_file(data: bytes, *, suffix: str = "") -> str:
    """Write ``data`` to a named temporary file and return its path.

    The caller is responsible for removing the file with
    :func:`cleanup_temp_file`.
    """
    fd, tmp_path = tempfile.mkstemp(suffix=suffix)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    return tmp_path


def convert_to_wav(input_path: str, *, target_sample_rate: int = TARGET_SAMPLE_RATE) -> str:
    """Convert an audio file to a mono WAV file at ``target_sample_rate``.

    Args:
        input_path: Path to the source audio file.
        target_sample_rate: Desired sample rate for the output WAV.

    Returns:
        The path to the converted WAV file.  The file lives in a temporary
        directory and should be cleaned up by the caller.

    Raises:
        ValueError: If the file extension is unsupported.
    """
    ext = Path(input_path).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported audio type: {ext}")
    audio = AudioSegment.from_file(input_path)
    audio = audio.set_channels(1).set_frame_rate(target_sample_rate).set_sample_width(2)
    fd, tmp_path = tempfile.mkstemp(suffix=".wav")
    os.close(fd)
    audio.export(tmp_path, format="wav")
    return tmp_path


def to_linear16(data: bytes, filename: str) -> bytes:
    """Return ``data`` re-encoded as 16 kHz mono 16-bit WAV bytes."""
    suffix = Path(filename).suffix.lower() or ".wav"
    source_path = write_temp_file(data, suffix=suffix)
    converted_path = None
    try:
        converted_path = convert_to_wav(source_path)
        with open(converted_path, "rb") as handle:
            return handle.read()
    finally:
        cleanup_temp_file(source_path)
        cleanup_temp_file(converted_path)


def cleanup_temp_file(path: Optional[str]) -> None:
    """Remove a temporary file if it exists.

    Nothing happens if ``path`` is ``None`` or the file does not exist.
    """
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as exc:
            logger.warning("Could not remove temporary file %s: %s", path, exc)
