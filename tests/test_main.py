import base64
import logging

import pytest

from voicescribe.errors import ConfigurationError
from voicescribe.main import configure_logging, create_app

from conftest import BUCKET


@pytest.fixture
def client(orchestrator):
    return create_app(orchestrator=orchestrator).test_client()


def _b64(data):
    return base64.b64encode(data).decode("ascii")


def test_start_and_check_round_trip(client, speech_client, storage_client, build):
    rv = client.post(
        "/start-transcribe",
        json={"audioBase64": _b64(b"RIFFdata"), "mimeType": "audio/wav", "fileName": "a b.wav"},
    )
    assert rv.status_code == 200
    job_id = rv.get_json()["jobId"]
    assert job_id == "op-1"
    config, _ = speech_client.requests[0]
    assert config.language_code == "es-MX"
    assert config.sample_rate_hertz == 0

    speech_client.operations.queue(job_id, build.operation(job_id, progress=10))
    rv = client.post("/check-status", json={"jobId": job_id})
    assert rv.get_json() == {"status": "PROCESSING", "jobId": job_id, "progress": 10}

    speech_client.operations.queues[job_id] = [
        build.operation(job_id, done=True, results=[build.result("hello"), build.result("world")]),
    ]
    rv = client.post("/check-status", json={"operationName": job_id})
    body = rv.get_json()
    assert rv.status_code == 200
    assert body["status"] == "DONE"
    assert body["text"] == "hello world"
    assert body["confidence"] is None
    assert storage_client.buckets[BUCKET].objects == {}


def test_request_options_reach_recognizer(client, speech_client):
    rv = client.post(
        "/start-transcribe",
        json={
            "gcsUri": "gs://b/clip.amr",
            "languageCode": "en-US",
            "model": "phone_call",
            "enableAutomaticPunctuation": False,
        },
    )
    assert rv.status_code == 200
    config, _ = speech_client.requests[0]
    assert config.language_code == "en-US"
    assert config.model == "phone_call"
    assert config.sample_rate_hertz == 8000
    assert not config.enable_automatic_punctuation


def test_data_url_prefix_supplies_mime_type(client, speech_client):
    payload = "data:audio/ogg;base64," + _b64(b"OggS")
    assert client.post("/start-transcribe", json={"audioBase64": payload}).status_code == 200
    config, _ = speech_client.requests[0]
    assert config.encoding.name == "OGG_OPUS"


@pytest.mark.parametrize(
    "body",
    [{}, {"audioBase64": "***not base64***"}, {"audioBase64": ""}],
)
def test_bad_submissions_are_validation_errors(client, body):
    rv = client.post("/start-transcribe", json=body)
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"


def test_non_json_body_is_rejected(client):
    rv = client.post("/check-status", data="jobId=1", content_type="text/plain")
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "ValidationError"


def test_failed_job_error_shape(client, speech_client, build):
    speech_client.operations.queue("op-x", build.operation("op-x", done=True, error=(3, "Invalid recognition")))
    rv = client.post("/check-status", json={"jobId": "op-x"})
    assert rv.status_code == 502
    assert rv.get_json() == {"error": "UpstreamRecognitionError", "message": "Invalid recognition", "code": 3}


def test_no_speech_error_shape(client, speech_client, build):
    speech_client.operations.queue("op-y", build.operation("op-y", done=True))
    rv = client.post("/check-status", json={"jobId": "op-y"})
    assert rv.status_code == 422
    assert rv.get_json()["error"] == "NoSpeechDetectedError"


def test_blocking_transcribe(client, speech_client, build):
    speech_client.operations.queue(
        "op-1",
        build.operation("op-1", progress=50),
        build.operation("op-1", done=True, results=[build.result("todo bien", 0.9)]),
    )
    rv = client.post("/transcribe", json={"audioBase64": _b64(b"ID3"), "mimeType": "audio/mpeg"})
    assert rv.status_code == 200
    assert rv.get_json()["text"] == "todo bien"


def test_blocking_transcribe_timeout(client, speech_client, build):
    speech_client.operations.queue("op-1", build.operation("op-1", progress=5))
    rv = client.post("/transcribe", json={"gcsUri": "gs://b/long.flac"})
    assert rv.status_code == 504
    assert rv.get_json()["error"] == "TimeoutError"


def test_upload_url(client):
    rv = client.post("/upload-url", json={"fileName": "talk.webm", "contentType": "audio/webm"})
    body = rv.get_json()
    assert rv.status_code == 200
    assert body["storageURI"].startswith(f"gs://{BUCKET}/uploads/")
    assert body["uploadURL"].startswith("https://")


def test_missing_credentials_become_configuration_error(monkeypatch):
    def fail(settings):
        raise ConfigurationError("GOOGLE_CREDENTIALS is not set")

    monkeypatch.setattr("voicescribe.main.build_orchestrator", fail)
    monkeypatch.setattr("voicescribe.main.load_settings", lambda: None)
    rv = create_app().test_client().post("/check-status", json={"jobId": "op-1"})
    assert rv.status_code == 500
    assert rv.get_json() == {"error": "ConfigurationError", "message": "GOOGLE_CREDENTIALS is not set"}


def test_unexpected_errors_become_internal_error(client, monkeypatch, orchestrator):
    def boom(job_id):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(orchestrator, "check", boom)
    rv = client.post("/check-status", json={"jobId": "op-1"})
    assert rv.status_code == 500
    assert rv.get_json() == {"error": "InternalError", "message": "kaboom"}


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}


def test_configure_logging_sets_package_level_under_existing_handlers(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    package_logger = logging.getLogger("voicescribe")
    previous = package_logger.level
    try:
        configure_logging("debug")
        assert calls == [{"level": "DEBUG", "format": "%(message)s"}]
        assert package_logger.level == logging.DEBUG
    finally:
        package_logger.setLevel(previous)


def test_configure_logging_reads_log_level_env(monkeypatch):
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)
    monkeypatch.setenv("LOG_LEVEL", "warning")
    package_logger = logging.getLogger("voicescribe")
    previous = package_logger.level
    try:
        configure_logging()
        assert package_logger.level == logging.WARNING
    finally:
        package_logger.setLevel(previous)
