import asyncio
import uuid

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.models.agent_application import AgentApplication
from app.services.submission import (
    ApplicationSubmission,
    DatabaseSubmissionSink,
    DuplicateSubmissionError,
    RetryPolicy,
    SubmissionError,
    SubmissionFailed,
    build_application,
    submit_with_retry,
)

from tests.conftest import (
    FakeAsyncSession,
    FakeResult,
    FakeSubmissionSink,
    complete_draft,
    sequence_handler,
)


def _submission(key: str = "tok-1", email: str = "a@x.com") -> ApplicationSubmission:
    return ApplicationSubmission(email=email, data=complete_draft(email), idempotency_key=key)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.mark.asyncio
async def test_exhausts_exactly_three_attempts() -> None:
    sink = FakeSubmissionSink(fail_times=10)
    sleep = SleepRecorder()

    with pytest.raises(SubmissionFailed) as exc_info:
        await submit_with_retry(sink, _submission(), RetryPolicy(), sleep=sleep)

    assert len(sink.insert_calls) == 3
    assert sleep.calls == [1.0, 1.0]
    assert exc_info.value.attempts == 3
    assert "database unavailable" in str(exc_info.value)


@pytest.mark.asyncio
async def test_success_stops_retrying() -> None:
    sink = FakeSubmissionSink(fail_times=1)
    sleep = SleepRecorder()

    receipt = await submit_with_retry(sink, _submission(), RetryPolicy(), sleep=sleep)

    assert len(sink.insert_calls) == 2
    assert sleep.calls == [1.0]
    assert receipt.reference.startswith("APP-")


@pytest.mark.asyncio
async def test_every_attempt_carries_the_same_token() -> None:
    sink = FakeSubmissionSink(fail_times=2)

    await submit_with_retry(sink, _submission("tok-9"), RetryPolicy(), sleep=SleepRecorder())

    assert {call.idempotency_key for call in sink.insert_calls} == {"tok-9"}


@pytest.mark.asyncio
async def test_duplicate_is_not_retried() -> None:
    sink = FakeSubmissionSink()
    await sink.insert(_submission("first"))
    sink.insert_calls.clear()

    with pytest.raises(DuplicateSubmissionError):
        await submit_with_retry(sink, _submission("second"), RetryPolicy(), sleep=SleepRecorder())

    assert len(sink.insert_calls) == 1


@pytest.mark.asyncio
async def test_same_token_replays_existing_record() -> None:
    sink = FakeSubmissionSink()
    first = await sink.insert(_submission("tok-1"))

    replay = await submit_with_retry(sink, _submission("tok-1"), RetryPolicy(), sleep=SleepRecorder())

    assert replay.replayed
    assert replay.application_id == first.application_id
    assert len(sink.records) == 1


class SlowSink(FakeSubmissionSink):
    """First insert hangs past the attempt deadline, then completes in the background."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.completed_late = False

    async def insert(self, submission):
        if not self.insert_calls:
            self.insert_calls.append(submission)
            await self.release.wait()
            self.completed_late = True
            self.insert_calls.pop()
            return await super().insert(submission)
        return await super().insert(submission)


@pytest.mark.asyncio
async def test_timed_out_attempt_is_retried_and_late_write_is_replayed() -> None:
    sink = SlowSink()
    policy = RetryPolicy(max_attempts=3, delay_seconds=0.001, attempt_timeout_seconds=0.01)

    async def release_after_timeout(_seconds: float) -> None:
        sink.release.set()
        await asyncio.sleep(0)

    receipt = await submit_with_retry(sink, _submission("tok-late"), policy, sleep=release_after_timeout)

    assert len(sink.records) == 1
    assert receipt.application_id == sink.records["a@x.com"][0].application_id


def test_retry_policy_reads_settings(monkeypatch) -> None:
    from app.core.settings import settings

    monkeypatch.setattr(settings, "submission_max_attempts", 5)
    monkeypatch.setattr(settings, "submission_retry_delay_seconds", 0.5)

    policy = RetryPolicy.from_settings()

    assert policy.max_attempts == 5
    assert policy.delay_seconds == 0.5


def test_build_application_copies_summary_columns() -> None:
    application = build_application(_submission())

    assert application.email == "a@x.com"
    assert application.full_name == "Ana Reyes"
    assert application.plan == "basic"
    assert application.status == "pending"
    assert application.reference == f"APP-{application.id.hex[:8].upper()}"
    assert application.form_data["requirements"]["certification"] is True
    assert application.submit_idempotency_key == "tok-1"


class _SessionFactory:
    def __init__(self, session: FakeAsyncSession) -> None:
        self.session = session

    def __call__(self) -> FakeAsyncSession:
        return self.session


def _existing(key: str) -> AgentApplication:
    application_id = uuid.uuid4()
    return AgentApplication(
        id=application_id,
        reference="APP-EXISTING",
        email="a@x.com",
        full_name="Ana Reyes",
        status="pending",
        form_data={},
        submit_idempotency_key=key,
    )


@pytest.mark.asyncio
async def test_database_sink_inserts_once() -> None:
    session = FakeAsyncSession()
    sink = DatabaseSubmissionSink(_SessionFactory(session))

    receipt = await sink.insert(_submission())

    assert session.committed
    assert receipt.status == "pending"
    assert isinstance(session.added[0], AgentApplication)


@pytest.mark.asyncio
async def test_database_sink_replays_matching_token() -> None:
    session = FakeAsyncSession().on_execute_return(FakeResult(scalar=_existing("tok-1")))
    sink = DatabaseSubmissionSink(_SessionFactory(session))

    receipt = await sink.insert(_submission("tok-1"))

    assert receipt.replayed
    assert receipt.reference == "APP-EXISTING"
    assert not session.added


@pytest.mark.asyncio
async def test_database_sink_rejects_second_submission() -> None:
    session = FakeAsyncSession().on_execute_return(FakeResult(scalar=_existing("other")))
    sink = DatabaseSubmissionSink(_SessionFactory(session))

    with pytest.raises(DuplicateSubmissionError):
        await sink.insert(_submission("tok-1"))


@pytest.mark.asyncio
async def test_database_sink_resolves_insert_race() -> None:
    class RacingSession(FakeAsyncSession):
        async def commit(self) -> None:
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

    session = RacingSession().on_execute(
        sequence_handler([FakeResult(), FakeResult(scalar=_existing("tok-1"))])
    )
    sink = DatabaseSubmissionSink(_SessionFactory(session))

    receipt = await sink.insert(_submission("tok-1"))

    assert receipt.replayed
    assert session.rollbacks == 1


@pytest.mark.asyncio
async def test_database_sink_wraps_storage_errors() -> None:
    class BrokenSession(FakeAsyncSession):
        async def commit(self) -> None:
            raise OperationalError("INSERT", {}, Exception("connection lost"))

    sink = DatabaseSubmissionSink(_SessionFactory(BrokenSession()))

    with pytest.raises(SubmissionError):
        await sink.insert(_submission())
