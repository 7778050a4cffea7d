import asyncio

import pytest

from application.dtos.payments import GatewayResult
from application.services.verification_worker import VerificationWorker
from core.settings import TokenCacheSettings
from domain.payment.verification import VerificationJob, VerificationState
from infrastructure.cache.token_cache import FabricTokenCache
from infrastructure.events import InMemoryEventSink


class ScriptedGateway:
    """Returns the scripted results in order, repeating the last one."""

    provider = "stub"

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def verify_payment(self, reference, context=None):
        self.calls += 1
        item = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item


def status(value: str) -> GatewayResult:
    return GatewayResult.success({"order_status": value, "total_amount": "100.00"})


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


def _names(sink: InMemoryEventSink) -> list[str]:
    return [name for name, _ in sink.events()]


@pytest.mark.asyncio
async def test_success_on_third_attempt(event_sink):
    gateway = ScriptedGateway(status("WAIT_PAY"), GatewayResult.empty(), status("PAY_SUCCESS"))
    sleep = RecordingSleep()
    worker = VerificationWorker(gateway, event_sink, tries=5, retry_schedule=[5, 5, 5, 5, 5], sleep=sleep)

    job = await worker.run_job(VerificationJob("TXN1", webhook_data={"merch_order_id": "TXN1"}))

    assert job.state is VerificationState.SUCCEEDED
    assert job.attempts == 3
    assert gateway.calls == 3
    assert sleep.delays == [5, 5]
    assert _names(event_sink) == ["payment.verified"]
    _, payload = event_sink.events()[0]
    assert payload["transaction_ref"] == "TXN1"
    assert payload["result"]["total_amount"] == "100.00"
    assert payload["webhook_data"] == {"merch_order_id": "TXN1"}


@pytest.mark.asyncio
async def test_gives_up_after_budget(event_sink):
    alerts = InMemoryEventSink()
    gateway = ScriptedGateway(status("WAIT_PAY"))
    sleep = RecordingSleep()
    worker = VerificationWorker(gateway, event_sink, tries=3, retry_schedule=[5, 5, 5], sleep=sleep, alert_sink=alerts)

    job = await worker.run_job(VerificationJob("TXN2"))

    assert job.state is VerificationState.GAVE_UP
    assert job.attempts == 3
    assert job.last_status == "WAIT_PAY"
    assert sleep.delays == [5, 5]
    assert _names(event_sink) == []
    assert _names(alerts) == ["payment.verification_gave_up"]
    assert alerts.events()[0][1]["attempts"] == 3


@pytest.mark.asyncio
async def test_pay_failed_is_terminal(event_sink):
    gateway = ScriptedGateway(status("PAY_FAILED"))
    worker = VerificationWorker(gateway, event_sink, sleep=RecordingSleep())

    job = await worker.run_job(VerificationJob("TXN3"))

    assert job.state is VerificationState.DEFINITIVELY_FAILED
    assert gateway.calls == 1
    assert _names(event_sink) == ["payment.verification_failed"]


@pytest.mark.asyncio
async def test_last_schedule_entry_is_reused(event_sink):
    sleep = RecordingSleep()
    worker = VerificationWorker(ScriptedGateway(status("WAIT_PAY")), event_sink, tries=4, retry_schedule=[1, 2], sleep=sleep)
    await worker.run_job(VerificationJob("TXN4"))
    assert sleep.delays == [1, 2, 2]


@pytest.mark.asyncio
async def test_gateway_exceptions_count_as_attempts(event_sink):
    gateway = ScriptedGateway(RuntimeError("boom"), GatewayResult.error("transport_error"), status("PAY_SUCCESS"))
    worker = VerificationWorker(gateway, event_sink, tries=3, retry_schedule=[0], sleep=RecordingSleep())

    job = await worker.run_job(VerificationJob("TXN5"))
    assert job.state is VerificationState.SUCCEEDED
    assert job.attempts == 3


@pytest.mark.asyncio
async def test_slow_attempt_times_out(event_sink):
    async def slow():
        await asyncio.sleep(1)
        return status("PAY_SUCCESS")

    gateway = ScriptedGateway(slow)
    worker = VerificationWorker(gateway, event_sink, tries=1, sleep=RecordingSleep(), attempt_timeout=0.01)
    job = await worker.run_job(VerificationJob("TXN6"))
    assert job.state is VerificationState.GAVE_UP


@pytest.mark.asyncio
async def test_max_attempts_override(event_sink):
    worker = VerificationWorker(ScriptedGateway(status("WAIT_PAY")), event_sink, tries=5, sleep=RecordingSleep())
    job = await worker.run_job(VerificationJob("TXN7"), max_attempts=1)
    assert job.state is VerificationState.GAVE_UP
    assert job.attempts == 1


@pytest.mark.asyncio
async def test_cancel_between_attempts(event_sink):
    blocked = asyncio.Event()

    async def wait_forever(delay):
        await blocked.wait()

    gateway = ScriptedGateway(status("WAIT_PAY"))
    worker = VerificationWorker(gateway, event_sink, tries=5, sleep=wait_forever)

    worker.submit("TXN8")
    await _wait_until(lambda: worker.get("TXN8").state == VerificationState.RETRYING.value)
    assert worker.cancel("TXN8")
    await _wait_until(lambda: worker.get("TXN8").state == VerificationState.CANCELLED.value)

    assert gateway.calls == 1
    assert _names(event_sink) == []
    assert not worker.cancel("TXN8")
    await worker.aclose()


@pytest.mark.asyncio
async def test_submit_deduplicates_active_jobs(event_sink):
    release = asyncio.Event()

    async def gated():
        await release.wait()
        return status("PAY_SUCCESS")

    gateway = ScriptedGateway(gated)
    worker = VerificationWorker(gateway, event_sink, sleep=RecordingSleep())

    first = worker.submit("TXN9", {"merch_order_id": "TXN9"})
    second = worker.submit("TXN9", {"merch_order_id": "TXN9"})
    assert first is second

    release.set()
    await _wait_until(lambda: worker.get("TXN9").state == VerificationState.SUCCEEDED.value)
    assert gateway.calls == 1
    assert _names(event_sink) == ["payment.verified"]

    # a finished job can be started again
    third = worker.submit("TXN9")
    assert third is not first
    await worker.aclose()


def test_unknown_job_view(event_sink):
    worker = VerificationWorker(ScriptedGateway(status("PAY_SUCCESS")), event_sink)
    assert worker.get("missing") is None
    assert not worker.cancel("missing")


def test_tries_must_be_positive(event_sink):
    with pytest.raises(ValueError):
        VerificationWorker(ScriptedGateway(), event_sink, tries=0)


class TokenGateway:
    """Fetches a fabric token through a shared cache before answering PAY_SUCCESS."""

    provider = "stub"

    def __init__(self, cache, credentials):
        self.cache = cache
        self.credentials = credentials

    async def verify_payment(self, reference, context=None):
        token = await self.cache.get_token(self.credentials)
        if token is None:
            return GatewayResult.error("token_unavailable")
        return status("PAY_SUCCESS")


@pytest.mark.asyncio
async def test_timed_out_job_does_not_strand_jobs_sharing_its_token_fetch(event_sink, credentials):
    async def slow_fetch(_):
        await asyncio.sleep(0.2)
        return "fabric-token"

    cache = FabricTokenCache(TokenCacheSettings(), slow_fetch)
    impatient = VerificationWorker(
        TokenGateway(cache, credentials), InMemoryEventSink(), tries=1, sleep=RecordingSleep(), attempt_timeout=0.05
    )
    patient = VerificationWorker(TokenGateway(cache, credentials), event_sink, tries=1, sleep=RecordingSleep())

    impatient.submit("A")
    await asyncio.sleep(0)
    patient.submit("B")

    await _wait_until(lambda: impatient.get("A").state == VerificationState.GAVE_UP.value)
    await _wait_until(lambda: patient.get("B").state == VerificationState.SUCCEEDED.value)
    assert _names(event_sink) == ["payment.verified"]
    await impatient.aclose()
    await patient.aclose()


@pytest.mark.asyncio
async def test_stray_cancellation_counts_as_failed_attempt(event_sink):
    gateway = ScriptedGateway(asyncio.CancelledError(), status("PAY_SUCCESS"))
    worker = VerificationWorker(gateway, event_sink, tries=3, retry_schedule=[0], sleep=RecordingSleep())

    job = await worker.run_job(VerificationJob("TXN10"))

    assert job.state is VerificationState.SUCCEEDED
    assert job.attempts == 2
    assert job.history[1].state is VerificationState.RETRYING


@pytest.mark.asyncio
async def test_job_stopped_mid_attempt_can_be_resubmitted(event_sink):
    started = asyncio.Event()

    async def hang():
        started.set()
        await asyncio.Event().wait()

    worker = VerificationWorker(ScriptedGateway(hang, status("PAY_SUCCESS")), event_sink, sleep=RecordingSleep())
    stuck = worker.submit("TXN11")
    await started.wait()
    assert stuck.state is VerificationState.VERIFYING

    worker._tasks["TXN11"].cancel()
    await _wait_until(lambda: worker.get("TXN11") is None)

    fresh = worker.submit("TXN11")
    assert fresh is not stuck
    await _wait_until(lambda: worker.get("TXN11").state == VerificationState.SUCCEEDED.value)
    await worker.aclose()
