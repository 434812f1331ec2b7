"""
HTTP entrypoints for the transcription service.

Routes (all ``POST`` with a JSON body):

* ``/upload-url`` – signed URL for uploading large files straight to storage.
* ``/start-transcribe`` – stage audio and start a job, returns ``jobId``.
* ``/check-status`` – poll a job once; returns the transcript when done.
* ``/transcribe`` – start a job and wait for it within the same request.

Every failure is returned as ``{"error": kind, "message": ...}``.  The
Google clients are built on first use, not at import time, so a missing
credential shows up as a ``ConfigurationError`` response rather than a
crash.

Run locally with ``python -m voicescribe.main`` or serve
``voicescribe.main:app`` with gunicorn.
"""

import base64
import binascii
import json
import logging
import os
import re
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from .config import Settings, load_settings
from .errors import ValidationError, error_response
from .orchestrator import Orchestrator, build_orchestrator

logger = logging.getLogger(__name__)

EXTENSION_KEY = "voicescribe.orchestrator"


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _decode_audio(payload: str) -> Tuple[bytes, Optional[str]]:
    """Decode base64 audio, accepting an optional ``data:<mime>;base64,`` prefix."""
    mime_type = None
    match = re.match(r"^data:([^;,]+)?(?:;[^,]*)?,", payload)
    if match:
        mime_type = match.group(1)
        payload = payload[match.end():]
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("audioBase64 is not valid base64") from exc


def _job_request(data: Dict[str, Any], orchestrator: Orchestrator) -> Dict[str, Any]:
    audio_b64 = data.get("audioBase64")
    gcs_uri = data.get("gcsUri")
    mime_type = data.get("mimeType")
    file_name = data.get("fileName")
    if file_name is not None and not isinstance(file_name, str):
        raise ValidationError("fileName must be a string")
    if audio_b64:
        if not isinstance(audio_b64, str):
            raise ValidationError("audioBase64 must be a string")
        audio, data_mime = _decode_audio(audio_b64)
        mime_type = mime_type or data_mime
    elif gcs_uri:
        audio = gcs_uri
    else:
        raise ValidationError("No audio received: provide audioBase64 or gcsUri")

    config = orchestrator.make_config(
        language_code=data.get("languageCode"),
        model=data.get("model"),
        enable_punctuation=data.get("enableAutomaticPunctuation", data.get("enablePunctuation")),
    )
    return {
        "audio": audio,
        "config": config,
        "mime_type": mime_type,
        "file_name": file_name,
    }


def create_app(orchestrator: Optional[Orchestrator] = None, settings: Optional[Settings] = None) -> Flask:
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = orchestrator

    def get_orchestrator() -> Orchestrator:
        current = app.extensions.get(EXTENSION_KEY)
        if current is None:
            current = build_orchestrator(settings or load_settings())
            app.extensions[EXTENSION_KEY] = current
        return current

    def failure(exc: Exception):
        body, status = error_response(exc)
        logger.info(json.dumps({"event": "request_failed", "path": request.path, **body}))
        return jsonify(body), status

    @app.route("/healthz", methods=["GET"])
    def healthz():
        return jsonify({"status": "ok"}), 200

    @app.route("/upload-url", methods=["POST"])
    def upload_url():
        try:
            data = _json_body()
            result = get_orchestrator().create_upload_url(data.get("fileName"), data.get("contentType"))
            return jsonify(result), 200
        except Exception as exc:  # pylint: disable=broad-except
            return failure(exc)

    @app.route("/start-transcribe", methods=["POST"])
    def start_transcribe():
        try:
            orchestrator = get_orchestrator()
            job = orchestrator.submit(**_job_request(_json_body(), orchestrator))
            return jsonify({"jobId": job.id}), 200
        except Exception as exc:  # pylint: disable=broad-except
            return failure(exc)

    @app.route("/check-status", methods=["POST"])
    def check_status():
        try:
            data = _json_body()
            job_id = data.get("jobId") or data.get("operationName")
            if not job_id or not isinstance(job_id, str):
                raise ValidationError("jobId is required")
            outcome = get_orchestrator().check(job_id)
            return jsonify(outcome.to_dict()), 200
        except Exception as exc:  # pylint: disable=broad-except
            return failure(exc)

    @app.route("/transcribe", methods=["POST"])
    def transcribe():
        try:
            orchestrator = get_orchestrator()
            result = orchestrator.transcribe(**_job_request(_json_body(), orchestrator))
            return jsonify(result.to_dict()), 200
        except Exception as exc:  # pylint: disable=broad-except
            return failure(exc)

    return app


def configure_logging(level: Optional[str] = None) -> None:
    """Log JSON event lines at ``LOG_LEVEL``, also when served by gunicorn."""
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(level=level, format="%(message)s")
    # basicConfig does nothing if the server already installed handlers.
    logging.getLogger("voicescribe").setLevel(level)


configure_logging()
app = create_app()


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.log_level)
    create_app(settings=settings).run(host="0.0.0.0", port=settings.port)
