from datetime import timedelta
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as api_exceptions
from google.cloud import speech_v1p1beta1 as speech
from google.longrunning import operations_pb2
from google.rpc import status_pb2

from voicescribe.orchestrator import Orchestrator
from voicescribe.polling import PollingScheduler
from voicescribe.stt_service import JobSubmitter
from voicescribe.temp_store import TempObjectStore

BUCKET = "proj-voicescribe-temp"


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name

    def upload_from_string(self, data, content_type=None):
        if self.bucket.fail_uploads:
            raise api_exceptions.ServiceUnavailable("storage down")
        self.bucket.objects[self.name] = (data, content_type)

    def delete(self):
        if self.bucket.fail_deletes:
            raise api_exceptions.Forbidden("no delete permission")
        if self.name not in self.bucket.objects:
            raise api_exceptions.NotFound("missing")
        del self.bucket.objects[self.name]

    def generate_signed_url(self, **kwargs):
        self.bucket.signed.append((self.name, kwargs))
        return f"https://storage.example/{self.bucket.name}/{self.name}?sig=1"


class FakeBucket:
    def __init__(self, name, rules=None):
        self.name = name
        self.objects = {}
        self.signed = []
        self.rules = list(rules or [])
        self.cors = None
        self.storage_class = None
        self.patched = False
        self.fail_uploads = False
        self.fail_deletes = False

    @property
    def lifecycle_rules(self):
        return iter(self.rules)

    def add_lifecycle_delete_rule(self, **conditions):
        self.rules.append({"action": {"type": "Delete"}, "condition": conditions})

    def patch(self):
        self.patched = True

    def blob(self, name):
        return FakeBlob(self, name)


class FakeStorageClient:
    def __init__(self):
        self.buckets = {}
        self.created = []
        self.lookups = 0
        self.conflict_on_create = False

    def lookup_bucket(self, name):
        self.lookups += 1
        return self.buckets.get(name)

    def bucket(self, name):
        return self.buckets.get(name) or FakeBucket(name)

    def create_bucket(self, bucket, location=None):
        self.created.append((bucket.name, location))
        if self.conflict_on_create:
            self.buckets[bucket.name] = FakeBucket(bucket.name, bucket.rules)
            raise api_exceptions.Conflict("bucket already exists")
        self.buckets[bucket.name] = bucket
        return bucket


class FakeOperationsClient:
    """Returns queued operations (or raises queued exceptions) per name."""

    def __init__(self):
        self.queues = {}
        self.calls = []

    def queue(self, name, *items):
        self.queues.setdefault(name, []).extend(items)

    def get_operation(self, name):
        self.calls.append(name)
        queue = self.queues.get(name)
        if not queue:
            raise api_exceptions.NotFound(f"operation {name} not found")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeSpeechClient:
    def __init__(self):
        self.requests = []
        self.submit_error = None
        self.transport = SimpleNamespace(operations_client=FakeOperationsClient())

    @property
    def operations(self):
        return self.transport.operations_client

    def long_running_recognize(self, config=None, audio=None):
        if self.submit_error is not None:
            raise self.submit_error
        self.requests.append((config, audio))
        name = f"op-{len(self.requests)}"
        return SimpleNamespace(operation=SimpleNamespace(name=name))


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_result(transcript, confidence=None, words=()):
    """One recognition result; ``words`` are ``(word, start_seconds, end_seconds)`` tuples."""
    alternative = speech.SpeechRecognitionAlternative(
        transcript=transcript,
        confidence=confidence or 0.0,
        words=[
            speech.WordInfo(
                word=word,
                start_time=timedelta(seconds=start),
                end_time=timedelta(seconds=end),
                confidence=0.9,
            )
            for word, start, end in words
        ],
    )
    return speech.SpeechRecognitionResult(alternatives=[alternative])


def make_operation(name, done=False, results=None, error=None, progress=None, uri=None):
    operation = operations_pb2.Operation(name=name, done=done)
    if progress is not None or uri:
        metadata = speech.LongRunningRecognizeMetadata(progress_percent=progress or 0, uri=uri or "")
        operation.metadata.Pack(speech.LongRunningRecognizeMetadata.pb(metadata))
    if error is not None:
        operation.error.CopyFrom(status_pb2.Status(code=error[0], message=error[1]))
    elif done:
        response = speech.LongRunningRecognizeResponse(results=list(results or []))
        operation.response.Pack(speech.LongRunningRecognizeResponse.pb(response))
    return operation


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def speech_client():
    return FakeSpeechClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(storage_client):
    return TempObjectStore(storage_client, BUCKET)


@pytest.fixture
def submitter(speech_client):
    return JobSubmitter(speech_client, sleep=lambda seconds: None)


@pytest.fixture
def scheduler(clock):
    return PollingScheduler(interval_seconds=5, timeout_seconds=60, sleep=clock.sleep, clock=clock)


@pytest.fixture
def orchestrator(store, submitter, scheduler):
    return Orchestrator(store=store, submitter=submitter, scheduler=scheduler)


@pytest.fixture
def build():
    return SimpleNamespace(operation=make_operation, result=make_result)
