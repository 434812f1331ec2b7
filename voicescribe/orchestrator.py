"""
Orchestration layer for the transcription service.

:class:`Orchestrator` composes staging, encoding resolution, submission,
polling and aggregation into the operations the HTTP layer exposes:

* :meth:`Orchestrator.submit` stages raw audio if needed and starts a job.
* :meth:`Orchestrator.check` reads a job once and, when it has finished,
  returns the transcript and releases the staged audio.
* :meth:`Orchestrator.transcribe` does both in one blocking call.
* :meth:`Orchestrator.create_upload_url` hands out a signed upload URL for
  payloads too large to send inline.

Clients are injected; :func:`build_orchestrator` wires the real ones from
:class:`~voicescribe.config.Settings`.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from google.cloud import speech_v1p1beta1 as speech
from google.cloud import storage

from .aggregator import aggregate
from .config import Settings
from .credentials import load_credentials
from .encoding import FALLBACK_MP3, resolve_first
from .errors import NoSpeechDetectedError, TranscriptionError, ValidationError
from .models import (
    JobProgress,
    JobState,
    TranscriptionConfig,
    TranscriptionJob,
    TranscriptionResult,
)
from .polling import PollingScheduler
from .stt_service import JobSubmitter
from .temp_store import TempObjectStore

logger = logging.getLogger(__name__)

AudioInput = Union[bytes, bytearray, str]


class Orchestrator:
    def __init__(
        self,
        *,
        store: TempObjectStore,
        submitter: JobSubmitter,
        scheduler: PollingScheduler,
        encoding_fallback: str = FALLBACK_MP3,
        default_config: Optional[TranscriptionConfig] = None,
        max_jobs: int = 1000,
        job_ttl_seconds: float = 86400.0,
    ) -> None:
        self.store = store
        self.submitter = submitter
        self.scheduler = scheduler
        self.encoding_fallback = encoding_fallback
        self.default_config = default_config or TranscriptionConfig()
        self.max_jobs = max_jobs
        self.job_ttl_seconds = job_ttl_seconds
        # Oldest first. Jobs nobody checks are evicted by age or count;
        # check() rebuilds evicted jobs from the operation metadata.
        self._jobs: "OrderedDict[str, TranscriptionJob]" = OrderedDict()
        self._lock = threading.Lock()

    def submit(
        self,
        audio: AudioInput,
        config: Optional[TranscriptionConfig] = None,
        *,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> TranscriptionJob:
        """Start a transcription job for raw bytes or a ``gs://`` URI.

        Nothing is left behind on failure: if the recogniser rejects the
        request, audio staged for it is released again.

        Raises:
            ValidationError: If the audio is missing or of an unusable type.
            StorageError: If staging fails.
            UpstreamSubmissionError: If the recogniser rejects the request.
        """
        config = config or self.default_config
        if isinstance(audio, (bytes, bytearray)) and audio:
            encoding = resolve_first((mime_type, file_name), self.encoding_fallback)
            staged = self.store.stage(bytes(audio), file_name, mime_type)
            source_uri = staged.uri
        elif isinstance(audio, str) and audio.strip():
            source_uri = audio.strip()
            if not source_uri.startswith("gs://"):
                raise ValidationError(f"Audio URI must be a gs:// URI, got {source_uri!r}")
            encoding = resolve_first((mime_type, file_name, source_uri), self.encoding_fallback)
            staged = None
        else:
            raise ValidationError("No audio received")

        try:
            job = self.submitter.submit(source_uri, config, encoding)
        except TranscriptionError:
            if staged is not None:
                self.store.release(staged)
            raise

        self._remember(job)
        return job

    def check(self, job_id: str) -> Union[JobProgress, TranscriptionResult]:
        """Query a job once.

        Returns :class:`JobProgress` while the job runs, and the
        :class:`TranscriptionResult` once it is done.  Staged audio is
        released once the job has finished, successfully or not.

        Raises:
            ValidationError: If the job id is empty or unknown.
            UpstreamRecognitionError: If the recogniser reported a failure.
            NoSpeechDetectedError: If the job finished without a transcript.
        """
        if not job_id:
            raise ValidationError("jobId is required")
        status = self.submitter.get_status(job_id)
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            # Submitted by another process; the source comes from the operation metadata.
            job = TranscriptionJob(
                id=job_id,
                source_uri=status.source_uri or "",
                config=self.default_config,
            )

        try:
            if not self.scheduler.observe(job, status):
                logger.info(
                    json.dumps({"event": "processing", "job_id": job_id, "progress": status.progress_percent})
                )
                return JobProgress(job_id, status.progress_percent)
            return self._finish(job, status.response)
        except TranscriptionError:
            self._discard(job)
            raise

    def transcribe(
        self,
        audio: AudioInput,
        config: Optional[TranscriptionConfig] = None,
        *,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> TranscriptionResult:
        """Submit a job and block until its transcript is available.

        When waiting is abandoned (timeout, status reads failing) the staged
        audio is kept: the recogniser may still be reading it, and the
        bucket lifecycle rule removes it later.
        """
        job = self.submit(audio, config, mime_type=mime_type, file_name=file_name)
        try:
            status = self.scheduler.wait(job, self.submitter.get_status)
            return self._finish(job, status.response)
        except TranscriptionError:
            if job.state in (JobState.DONE, JobState.FAILED):
                self._discard(job)
            else:
                self._forget(job)
            raise

    def make_config(
        self,
        *,
        language_code: Optional[str] = None,
        model: Optional[str] = None,
        enable_punctuation: Optional[bool] = None,
    ) -> TranscriptionConfig:
        """Per-request config with this orchestrator's defaults for omitted options."""
        return TranscriptionConfig.from_options(
            language_code=language_code,
            model=model,
            enable_punctuation=enable_punctuation,
            default_language_code=self.default_config.language_code,
            default_model=self.default_config.model,
        )

    def create_upload_url(self, file_name: str, content_type: Optional[str] = None) -> dict:
        return self.store.create_upload_url(file_name, content_type)

    def _finish(self, job: TranscriptionJob, response: Optional[dict]) -> TranscriptionResult:
        try:
            result = aggregate(response)
        except NoSpeechDetectedError:
            logger.warning(json.dumps({"event": "no_speech", "job_id": job.id}))
            raise
        self._discard(job)
        logger.info(
            json.dumps(
                {
                    "event": "result",
                    "job_id": job.id,
                    "words": len(result.words),
                    "confidence": result.confidence,
                }
            )
        )
        return result

    def _discard(self, job: TranscriptionJob) -> None:
        self._forget(job)
        if job.source_uri and self.store.owns(job.source_uri):
            self.store.release(job.source_uri)

    def _remember(self, job: TranscriptionJob) -> None:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.job_ttl_seconds)
        with self._lock:
            self._jobs[job.id] = job
            while self._jobs:
                oldest = next(iter(self._jobs.values()))
                if len(self._jobs) <= self.max_jobs and oldest.created_at >= cutoff:
                    break
                self._jobs.popitem(last=False)

    def _forget(self, job: TranscriptionJob) -> None:
        with self._lock:
            self._jobs.pop(job.id, None)

    def get_job(self, job_id: str) -> Optional[TranscriptionJob]:
        with self._lock:
            return self._jobs.get(job_id)


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Construct the production clients from ``settings`` and wire them together."""
    loaded = load_credentials(settings.credentials_json, settings.project_id)
    speech_client = speech.SpeechClient(credentials=loaded.credentials)
    storage_client = storage.Client(project=loaded.project_id, credentials=loaded.credentials)

    store = TempObjectStore(
        storage_client,
        settings.bucket_name(loaded.project_id),
        location=settings.bucket_location,
        retention_days=settings.retention_days,
        upload_url_ttl_seconds=settings.upload_url_ttl_seconds,
    )
    scheduler = PollingScheduler(
        interval_seconds=settings.poll_interval_seconds,
        timeout_seconds=settings.poll_timeout_seconds,
        backoff=settings.poll_backoff,
        max_interval_seconds=settings.poll_max_interval_seconds,
    )
    return Orchestrator(
        store=store,
        submitter=JobSubmitter(speech_client),
        scheduler=scheduler,
        encoding_fallback=settings.encoding_fallback,
        job_ttl_seconds=settings.retention_days * 86400,
        default_config=TranscriptionConfig.from_options(
            default_language_code=settings.default_language_code,
            default_model=settings.default_model,
        ),
    )
