"""
Result aggregation.

The Speech‑to‑Text API splits a long recording into consecutive results,
each carrying ranked alternatives.  :func:`aggregate` folds the top
alternative of every result into one transcript, one confidence score and
one flat word list.

The confidence is the plain mean over results that reported one; it is not
weighted by result length.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import NoSpeechDetectedError
from .models import TranscriptionResult, Word


def duration_to_seconds(value: Any) -> float:
    """Convert a protobuf ``Duration`` in any of its usual shapes to seconds.

    Accepts ``{"seconds": 3, "nanos": 250000000}`` (``seconds`` may be a
    string, as int64 is rendered in protobuf JSON), ``"3.250s"``,
    :class:`datetime.timedelta` and plain numbers.  Missing values count as
    zero.
    """
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, Mapping):
        seconds = int(value.get("seconds") or 0)
        nanos = int(value.get("nanos") or 0)
        return seconds + nanos / 1e9
    if isinstance(value, str):
        match = re.match(r"^\s*(-?[0-9]+(?:\.[0-9]+)?)s?\s*$", value)
        return float(match.group(1)) if match else 0.0
    seconds = getattr(value, "seconds", 0) or 0
    nanos = getattr(value, "nanos", 0) or 0
    return int(seconds) + int(nanos) / 1e9


def _top_alternative(result: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    alternatives = result.get("alternatives") or []
    return alternatives[0] if alternatives else None


def _convert_word(info: Mapping[str, Any]) -> Word:
    start = duration_to_seconds(info.get("startTime", info.get("start_time")))
    end = duration_to_seconds(info.get("endTime", info.get("end_time")))
    confidence = info.get("confidence")
    return Word(
        text=info.get("word", ""),
        start_seconds=start,
        end_seconds=max(start, end),
        confidence=float(confidence) if confidence is not None else None,
    )


def flatten_words(results: Iterable[Mapping[str, Any]]) -> List[Word]:
    """Extract the words of every top alternative, in order."""
    words: List[Word] = []
    for result in results:
        alternative = _top_alternative(result)
        if alternative is None:
            continue
        for info in alternative.get("words") or []:
            if "word" in info:
                words.append(_convert_word(info))
    return words


def aggregate(response: Optional[Dict[str, Any]]) -> TranscriptionResult:
    """Fold a ``LongRunningRecognizeResponse`` dictionary into one result.

    Args:
        response: The response as produced by ``MessageToDict``, i.e. a
            mapping with a ``results`` list.

    Raises:
        NoSpeechDetectedError: If no result carries any transcript text.
    """
    results = list((response or {}).get("results") or [])
    pieces: List[str] = []
    total_confidence = 0.0
    confidence_count = 0

    for result in results:
        alternative = _top_alternative(result)
        if alternative is None:
            continue
        transcript = (alternative.get("transcript") or "").strip()
        if transcript:
            pieces.append(transcript)
        if alternative.get("confidence") is not None:
            total_confidence += float(alternative["confidence"])
            confidence_count += 1

    text = " ".join(pieces).strip()
    if not text:
        raise NoSpeechDetectedError("No speech was detected in the audio")

    return TranscriptionResult(
        text=text,
        confidence=total_confidence / confidence_count if confidence_count else None,
        words=flatten_words(results),
    )
