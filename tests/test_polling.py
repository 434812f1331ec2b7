import pytest

from voicescribe.errors import JobTimeoutError, UpstreamRecognitionError, ValidationError
from voicescribe.models import JobState, OperationStatus, TranscriptionConfig, TranscriptionJob
from voicescribe.polling import PollingScheduler


def _job():
    return TranscriptionJob(id="op-1", source_uri="gs://b/a.wav", config=TranscriptionConfig())


def _fetcher(*statuses):
    calls = []

    def fetch(job_id):
        calls.append(job_id)
        return statuses[min(len(calls), len(statuses)) - 1]

    fetch.calls = calls
    return fetch


RUNNING = OperationStatus(name="op-1", done=False, progress_percent=40)
DONE = OperationStatus(name="op-1", done=True, response={"results": []})
FAILED = OperationStatus(name="op-1", done=True, error_code=3, error_message="Invalid audio")


def test_wait_returns_when_done(scheduler, clock):
    job = _job()
    fetch = _fetcher(RUNNING, RUNNING, DONE)
    status = scheduler.wait(job, fetch)
    assert status is DONE
    assert job.state is JobState.DONE
    assert job.completed_at is not None
    assert len(fetch.calls) == 3
    assert clock.sleeps == [5, 5]


def test_failure_propagates_upstream_error_verbatim(scheduler):
    job = _job()
    with pytest.raises(UpstreamRecognitionError) as excinfo:
        scheduler.wait(job, _fetcher(RUNNING, FAILED))
    assert excinfo.value.message == "Invalid audio"
    assert excinfo.value.upstream_message == "Invalid audio"
    assert excinfo.value.code == 3
    assert job.state is JobState.FAILED


def test_timeout_stops_querying(scheduler, clock):
    job = _job()
    fetch = _fetcher(RUNNING)
    with pytest.raises(JobTimeoutError) as excinfo:
        scheduler.wait(job, fetch)
    assert isinstance(excinfo.value, TimeoutError)
    assert excinfo.value.kind == "TimeoutError"
    assert job.state is JobState.TIMED_OUT
    calls_at_timeout = len(fetch.calls)
    assert clock.now == 60
    # 12 sleeps of 5s fill the 60s budget, with one query before each and one after the last.
    assert calls_at_timeout == 13

    with pytest.raises(ValidationError):
        scheduler.wait(job, fetch)
    assert len(fetch.calls) == calls_at_timeout


def test_backoff_grows_and_never_oversleeps_budget(clock):
    scheduler = PollingScheduler(
        interval_seconds=5,
        timeout_seconds=32,
        backoff=2.0,
        max_interval_seconds=12,
        sleep=clock.sleep,
        clock=clock,
    )
    with pytest.raises(JobTimeoutError):
        scheduler.wait(_job(), _fetcher(RUNNING))
    assert clock.sleeps == [5, 10, 12, 5]


def test_terminal_state_is_sticky():
    job = _job()
    scheduler = PollingScheduler()
    assert scheduler.observe(job, DONE) is True
    assert scheduler.observe(job, RUNNING) is False
    assert job.state is JobState.DONE


def test_observe_moves_submitted_job_to_running():
    job = _job()
    assert PollingScheduler().observe(job, RUNNING) is False
    assert job.state is JobState.RUNNING
