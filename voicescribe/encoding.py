"""
Audio encoding resolution.

Maps a MIME type, a file extension or a file name onto the Speech‑to‑Text
``RecognitionConfig.AudioEncoding`` name.  A sample rate is attached only
for encodings that mandate one (AMR is fixed at 8 kHz); every other format
carries its rate in the file header, and sending a conflicting rate makes the
recogniser reject the request.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Dict, Iterable, Optional

from .errors import ValidationError
from .models import AudioEncoding

FALLBACK_MP3 = "mp3"
FALLBACK_AUTO = "auto"
FALLBACK_STRICT = "strict"
FALLBACK_MODES = (FALLBACK_MP3, FALLBACK_AUTO, FALLBACK_STRICT)

UNSPECIFIED = "ENCODING_UNSPECIFIED"

ENCODING_MAP: Dict[str, str] = {
    "wav": "LINEAR16",
    "wave": "LINEAR16",
    "flac": "FLAC",
    "ogg": "OGG_OPUS",
    "opus": "OGG_OPUS",
    "webm": "WEBM_OPUS",
    "amr": "AMR",
    "mp3": "MP3",
    "mpeg": "MP3",
    "aac": "MP3",
    "m4a": "MP3",
}

MANDATORY_SAMPLE_RATES: Dict[str, int] = {"AMR": 8000}


def _normalise_hint(hint: str) -> str:
    value = hint.strip().lower()
    # Drop MIME parameters such as "; codecs=opus".
    value = value.split(";", 1)[0].strip()
    if "/" in value:
        value = value.rsplit("/", 1)[1]
    if "." in value:
        value = PurePosixPath(value).suffix or value
    value = value.lstrip(".")
    if value.startswith("x-"):
        value = value[2:]
    return value


def lookup_encoding(hint: Optional[str]) -> Optional[str]:
    """Return the encoding name for ``hint`` or ``None`` when it is not in the table."""
    if not hint:
        return None
    return ENCODING_MAP.get(_normalise_hint(hint))


def resolve_encoding(hint: Optional[str], fallback: str = FALLBACK_MP3) -> AudioEncoding:
    """Resolve an encoding hint.

    Args:
        hint: MIME type (``audio/x-wav``), extension (``wav``/``.wav``) or
            file name (``meeting.flac``).  ``None`` or an empty string counts
            as unrecognised.
        fallback: What to do with unrecognised hints: ``"mp3"`` resolves to
            ``MP3``, ``"auto"`` leaves the encoding unspecified so the
            recogniser detects it, ``"strict"`` raises.

    Raises:
        ValidationError: If ``hint`` is not a string, or it is unrecognised
            and ``fallback`` is ``"strict"``.
    """
    if hint is not None and not isinstance(hint, str):
        raise ValidationError(f"Encoding hint must be a string, got {type(hint).__name__}")
    if fallback not in FALLBACK_MODES:
        raise ValidationError(f"Unknown encoding fallback mode: {fallback!r}")

    encoding = lookup_encoding(hint)
    if encoding is None:
        if fallback == FALLBACK_STRICT:
            raise ValidationError(f"Unsupported audio format: {hint!r}")
        encoding = "MP3" if fallback == FALLBACK_MP3 else UNSPECIFIED
    return AudioEncoding(encoding=encoding, sample_rate_hertz=MANDATORY_SAMPLE_RATES.get(encoding))


def resolve_first(hints: Iterable[Optional[str]], fallback: str = FALLBACK_MP3) -> AudioEncoding:
    """Resolve the first hint found in the table, in order.

    Used when several hints are available (MIME type, file name, URI): a
    generic MIME type such as ``application/octet-stream`` must not hide a
    ``.wav`` file name.  The fallback applies only when no hint matches.
    """
    candidates = [hint for hint in hints if hint is not None]
    for hint in candidates:
        if not isinstance(hint, str):
            raise ValidationError(f"Encoding hint must be a string, got {type(hint).__name__}")
    for hint in candidates:
        if lookup_encoding(hint) is not None:
            return resolve_encoding(hint, fallback)
    return resolve_encoding(candidates[0] if candidates else None, fallback)
