"""
Job Poller Tests
"""

import pytest

from app.core.errors import TransientUpstreamError
from app.schemas.transcript import AIJobStatus
from app.services.transcripts.poller import JobPoller

from tests.fakes import FakeAIClient, ja_segments

HANDLE = "https://ai.test/results/job-1"


def make_poller(clock, **kwargs):
    return JobPoller(clock=clock, sleep=clock.sleep, **kwargs)


@pytest.mark.asyncio
async def test_returns_done_job(clock):
    ai = FakeAIClient([
        AIJobStatus(status="queued"),
        AIJobStatus(status="processing"),
        AIJobStatus(status="done", segments=ja_segments(), language="ja"),
    ])

    outcome = await make_poller(clock).poll(HANDLE, ai.get_status)

    assert outcome.state == "done"
    assert outcome.polls == 3
    assert outcome.job.segments == ja_segments()


@pytest.mark.asyncio
async def test_delay_grows_and_caps(clock):
    ai = FakeAIClient([AIJobStatus(status="processing")])

    outcome = await make_poller(clock, budget_seconds=25, safety_margin_seconds=5).poll(HANDLE, ai.get_status)

    assert outcome.state == "processing"
    assert clock.sleeps == [1, 2, 4, 5, 5]
    assert outcome.polls == 5


@pytest.mark.asyncio
async def test_time_already_spent_counts_against_budget(clock):
    ai = FakeAIClient([AIJobStatus(status="processing")])
    started_at = clock()
    clock.advance(15)

    outcome = await make_poller(clock).poll(HANDLE, ai.get_status, started_at=started_at)

    assert outcome.state == "processing"
    assert clock.sleeps == [1, 2]
    # Never sleeps past the safety margin
    assert clock() <= started_at + 20


@pytest.mark.asyncio
async def test_exhausted_budget_returns_without_polling(clock):
    ai = FakeAIClient()
    started_at = clock() - 30

    outcome = await make_poller(clock).poll(HANDLE, ai.get_status, started_at=started_at)

    assert outcome.state == "processing"
    assert outcome.polls == 0
    assert ai.polled == 0


@pytest.mark.asyncio
async def test_job_error_is_reported(clock):
    ai = FakeAIClient([AIJobStatus(status="error", error="audio unavailable")])

    outcome = await make_poller(clock).poll(HANDLE, ai.get_status)

    assert outcome.state == "error"
    assert outcome.job.error == "audio unavailable"


@pytest.mark.asyncio
async def test_transient_poll_failures_are_tolerated(clock):
    calls = []

    async def flaky_status(handle):
        calls.append(handle)
        if len(calls) == 1:
            raise TransientUpstreamError("gateway timeout")
        return AIJobStatus(status="done", segments=ja_segments(), language="ja")

    outcome = await make_poller(clock).poll(HANDLE, flaky_status)

    assert outcome.state == "done"
    assert outcome.polls == 2
    assert clock.sleeps == [1, 2]
