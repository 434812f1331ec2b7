"""
Google Speech‑to‑Text service wrapper.

:class:`JobSubmitter` starts ``long_running_recognize`` jobs against audio
stored in Cloud Storage and reads their status back by operation name.
Starting a job is never retried: a request the API rejected once will be
rejected again.  Status reads are side-effect free and are retried on
transient transport errors.

Usage::

    from voicescribe.stt_service import JobSubmitter

    submitter = JobSubmitter(speech.SpeechClient())
    job = submitter.submit("gs://bucket/audio.wav", config, AudioEncoding("LINEAR16"))
    status = submitter.get_status(job.id)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .encoding import UNSPECIFIED
from .errors import (
    ConfigurationError,
    UpstreamSubmissionError,
    UpstreamUnavailableError,
    ValidationError,
)
from .models import AudioEncoding, OperationStatus, TranscriptionConfig, TranscriptionJob

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    api_exceptions.ServiceUnavailable,
    api_exceptions.DeadlineExceeded,
    api_exceptions.InternalServerError,
)


def build_recognition_config(
    config: TranscriptionConfig, encoding: Optional[AudioEncoding]
) -> speech.RecognitionConfig:
    """Translate a :class:`TranscriptionConfig` into the API request config.

    The encoding is omitted when unspecified so the recogniser detects it,
    and the sample rate is only sent when the encoding mandates one.
    """
    recognition_config = speech.RecognitionConfig(
        language_code=config.language_code,
        model=config.model,
        enable_automatic_punctuation=config.enable_punctuation,
        enable_word_time_offsets=config.enable_word_timestamps,
        enable_word_confidence=config.enable_word_confidence,
    )
    if encoding is not None and encoding.encoding != UNSPECIFIED:
        recognition_config.encoding = speech.RecognitionConfig.AudioEncoding[encoding.encoding]
        if encoding.sample_rate_hertz:
            recognition_config.sample_rate_hertz = encoding.sample_rate_hertz
    return recognition_config


def parse_operation(operation: Any) -> OperationStatus:
    """Convert a raw ``google.longrunning.Operation`` into an :class:`OperationStatus`."""
    progress = None
    source_uri = None
    if operation.metadata.value:
        metadata = speech.LongRunningRecognizeMetadata.deserialize(operation.metadata.value)
        progress = metadata.progress_percent
        source_uri = metadata.uri or None

    if not operation.done:
        return OperationStatus(
            name=operation.name, done=False, progress_percent=progress, source_uri=source_uri
        )

    outcome = operation.WhichOneof("result")
    if outcome == "error":
        return OperationStatus(
            name=operation.name,
            done=True,
            error_code=operation.error.code,
            error_message=operation.error.message,
            progress_percent=progress,
            source_uri=source_uri,
        )

    response: Dict[str, Any] = {}
    if outcome == "response":
        message = speech.LongRunningRecognizeResponse.deserialize(operation.response.value)
        response = MessageToDict(message._pb)
    return OperationStatus(
        name=operation.name,
        done=True,
        response=response,
        progress_percent=progress,
        source_uri=source_uri,
    )


class JobSubmitter:
    def __init__(
        self,
        client: speech.SpeechClient,
        *,
        status_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._retrying = Retrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            wait=wait_exponential(multiplier=1, max=8),
            stop=stop_after_attempt(status_attempts),
            sleep=sleep,
            reraise=True,
        )

    def submit(
        self,
        source_uri: str,
        config: TranscriptionConfig,
        encoding: Optional[AudioEncoding] = None,
    ) -> TranscriptionJob:
        """Start an asynchronous recognition job.

        Raises:
            ConfigurationError: If the client cannot authenticate.
            UpstreamSubmissionError: If the API rejects the request.
        """
        recognition_config = build_recognition_config(config, encoding)
        audio = speech.RecognitionAudio(uri=source_uri)
        try:
            operation = self._client.long_running_recognize(config=recognition_config, audio=audio)
        except auth_exceptions.GoogleAuthError as exc:
            raise ConfigurationError(f"Speech-to-Text authentication failed: {exc}") from exc
        except api_exceptions.GoogleAPICallError as exc:
            raise UpstreamSubmissionError(f"Speech-to-Text rejected the request: {exc.message}") from exc

        job = TranscriptionJob(
            id=operation.operation.name,
            source_uri=source_uri,
            config=config,
            encoding=encoding,
        )
        logger.info(
            json.dumps(
                {
                    "event": "submit",
                    "job_id": job.id,
                    "uri": source_uri,
                    "encoding": encoding.encoding if encoding else None,
                    "language": config.language_code,
                    "model": config.model,
                }
            )
        )
        return job

    def get_status(self, job_id: str) -> OperationStatus:
        """Read the current state of a job once.

        Raises:
            ValidationError: If the job id is empty or unknown upstream.
            UpstreamUnavailableError: If the status read keeps failing.
        """
        if not job_id:
            raise ValidationError("jobId is required")
        try:
            operation = self._retrying(self._client.transport.operations_client.get_operation, job_id)
        except (api_exceptions.NotFound, api_exceptions.InvalidArgument) as exc:
            raise ValidationError(f"Unknown or malformed job id: {job_id}") from exc
        except auth_exceptions.GoogleAuthError as exc:
            raise ConfigurationError(f"Speech-to-Text authentication failed: {exc}") from exc
        except api_exceptions.GoogleAPICallError as exc:
            raise UpstreamUnavailableError(f"Could not read status of job {job_id}: {exc.message}") from exc
        return parse_operation(operation)
