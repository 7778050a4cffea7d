"""
Asynchronous payment verification.

Each webhook-triggered job runs on its own asyncio task and polls
``PaymentGateway.verify_payment`` until the gateway reports a terminal status
or the attempt budget is spent:

- ``PAY_SUCCESS``: job SUCCEEDED, ``payment.verified`` emitted.
- ``PAY_FAILED``: job DEFINITIVELY_FAILED, ``payment.verification_failed`` emitted.
- anything else, including empty and error results: RETRYING, then back to
  VERIFYING after ``retry_schedule[attempt - 1]`` seconds (the last entry is
  reused past the end of the schedule).
- budget spent: GAVE_UP, ``payment.verification_gave_up`` sent to the alert sink.

Attempts for one reference never overlap. Cancellation only lands between
attempts; an in-flight gateway call is never interrupted by ``cancel``.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from application.dtos.payments import GatewayResult, VerificationJobView
from application.ports.events import EventSink
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import VerifyPaymentQueueSettings
from domain.payment.events import (
    PaymentEvent,
    PaymentVerificationFailed,
    PaymentVerificationGaveUp,
    PaymentVerified,
)
from domain.payment.verification import VerificationJob, VerificationState, backoff_delay
from shared.codes.payment_codes import PAY_FAILED, PAY_SUCCESS


logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

_CANCELLABLE = (VerificationState.PENDING, VerificationState.RETRYING)


def job_view(job: VerificationJob) -> VerificationJobView:
    """Read-only snapshot handed out to callers outside the worker."""
    return VerificationJobView(
        transaction_ref=job.transaction_ref,
        state=job.state.value,
        attempts=job.attempts,
        last_status=job.last_status,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


class VerificationWorker:
    def __init__(
        self,
        gateway: PaymentGateway,
        event_sink: EventSink,
        *,
        tries: int = 5,
        retry_schedule: Sequence[float] = (5, 5, 5, 5, 5),
        alert_sink: Optional[EventSink] = None,
        sleep: Sleep = asyncio.sleep,
        attempt_timeout: Optional[float] = None,
        max_retained_jobs: int = 10_000,
    ) -> None:
        if tries < 1:
            raise ValueError("tries must be >= 1")
        self._gateway = gateway
        self._events = event_sink
        self._alerts = alert_sink or event_sink
        self._tries = tries
        self._schedule = list(retry_schedule)
        self._sleep = sleep
        self._attempt_timeout = attempt_timeout
        self._max_retained = max_retained_jobs
        self._jobs: dict[str, VerificationJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_requested: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        settings: VerifyPaymentQueueSettings,
        gateway: PaymentGateway,
        event_sink: EventSink,
        **kwargs: Any,
    ) -> "VerificationWorker":
        kwargs.setdefault("attempt_timeout", settings.timeout)
        return cls(gateway, event_sink, tries=settings.tries, retry_schedule=settings.retry_schedule, **kwargs)

    @property
    def tries(self) -> int:
        return self._tries

    # ---- job management ------------------------------------------------

    def submit(
        self,
        transaction_ref: str,
        webhook_data: Optional[Mapping[str, Any]] = None,
        client_ip: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> VerificationJob:
        """Create a job and schedule it; an active job for the same reference is returned as-is."""
        existing = self._jobs.get(transaction_ref)
        if existing is not None and not existing.is_terminal:
            logger.info("verification_job_deduplicated", transaction_ref=transaction_ref, state=existing.state.value)
            return existing

        job = VerificationJob(
            transaction_ref=transaction_ref,
            webhook_data=dict(webhook_data or {}),
            client_ip=client_ip,
            context=dict(context or {}),
        )
        self._jobs[transaction_ref] = job
        self._prune()
        task = asyncio.create_task(self.run_job(job), name=f"verify-payment-{transaction_ref}")
        self._tasks[transaction_ref] = task
        task.add_done_callback(lambda t, j=job: self._on_task_done(j, t))
        logger.info("verification_job_submitted", transaction_ref=transaction_ref, client_ip=client_ip)
        return job

    def get(self, transaction_ref: str) -> Optional[VerificationJobView]:
        job = self._jobs.get(transaction_ref)
        return None if job is None else job_view(job)

    def cancel(self, transaction_ref: str) -> bool:
        """Request cancellation; it lands before the next attempt starts."""
        job = self._jobs.get(transaction_ref)
        if job is None or job.is_terminal:
            return False
        self._cancel_requested.add(transaction_ref)
        if job.state in _CANCELLABLE:
            # between attempts: interrupt the backoff wait
            task = self._tasks.get(transaction_ref)
            if task is not None and not task.done():
                task.cancel()
        logger.info("verification_cancel_requested", transaction_ref=transaction_ref, state=job.state.value)
        return True

    async def aclose(self) -> None:
        """Cancel outstanding jobs and wait for their tasks to settle."""
        tasks = list(self._tasks.values())
        for ref in list(self._tasks):
            self.cancel(ref)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _on_task_done(self, job: VerificationJob, task: asyncio.Task) -> None:
        ref = job.transaction_ref
        if self._tasks.get(ref) is task:
            del self._tasks[ref]
        if task.cancelled():
            outcome = "cancelled"
        elif task.exception() is not None:
            outcome = "crashed"
            logger.error("verification_job_crashed", transaction_ref=ref, error=str(task.exception()))
        else:
            outcome = "finished"
        if not job.is_terminal:
            if job.state in _CANCELLABLE:
                job.cancel()
            elif self._jobs.get(ref) is job:
                # stopped mid-attempt: forget it so the next webhook starts a fresh job
                del self._jobs[ref]
                logger.warning(
                    "verification_job_abandoned",
                    transaction_ref=ref,
                    state=job.state.value,
                    attempts=job.attempts,
                    outcome=outcome,
                )
        if self._jobs.get(ref) in (None, job):
            self._cancel_requested.discard(ref)

    def _prune(self) -> None:
        if len(self._jobs) <= self._max_retained:
            return
        for ref in [r for r, j in self._jobs.items() if j.is_terminal]:
            if len(self._jobs) <= self._max_retained:
                break
            del self._jobs[ref]

    # ---- state machine -------------------------------------------------

    def _cancelled(self, job: VerificationJob) -> bool:
        if job.transaction_ref in self._cancel_requested and job.state in _CANCELLABLE:
            job.cancel()
            logger.info("verification_job_cancelled", transaction_ref=job.transaction_ref, attempts=job.attempts)
            return True
        return False

    async def _verify_once(self, job: VerificationJob) -> GatewayResult[dict]:
        call = self._gateway.verify_payment(job.transaction_ref, job.context)
        try:
            if self._attempt_timeout:
                return await asyncio.wait_for(call, self._attempt_timeout)
            return await call
        except asyncio.TimeoutError:
            logger.error(
                "verification_attempt_timeout",
                transaction_ref=job.transaction_ref,
                attempt=job.attempts,
                timeout=self._attempt_timeout,
            )
            return GatewayResult.error("attempt_timeout")
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # a cancellation raised by a collaborator, not aimed at this job's task
            logger.error(
                "verification_attempt_cancelled",
                transaction_ref=job.transaction_ref,
                attempt=job.attempts,
            )
            return GatewayResult.error("attempt_cancelled")
        except Exception as exc:
            # configuration or unexpected failures count as "no result" for this attempt
            logger.error(
                "verification_attempt_error",
                transaction_ref=job.transaction_ref,
                attempt=job.attempts,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return GatewayResult.error(type(exc).__name__)

    async def run_job(self, job: VerificationJob, max_attempts: Optional[int] = None) -> VerificationJob:
        """Drive ``job`` to a terminal state; ``max_attempts`` overrides the worker budget for this run."""
        budget = max(1, max_attempts) if max_attempts is not None else self._tries
        while not job.is_terminal:
            if self._cancelled(job):
                break

            attempt = job.begin_attempt()
            logger.info(
                "verification_attempt",
                transaction_ref=job.transaction_ref,
                attempt=attempt,
                max_attempts=budget,
                client_ip=job.client_ip,
            )
            result = await self._verify_once(job)
            status = result.data.get("order_status") if result.ok and result.data else None
            logger.info(
                "verification_result",
                transaction_ref=job.transaction_ref,
                attempt=attempt,
                outcome=result.outcome.value,
                reason=result.reason,
                status=status,
                amount=(result.data or {}).get("total_amount"),
            )

            if status == PAY_SUCCESS:
                job.mark_succeeded(status)
                await self._emit(self._events, PaymentVerified(job.transaction_ref, result.data or {}, job.webhook_data))
                logger.info("verification_succeeded", transaction_ref=job.transaction_ref, attempts=attempt)
                break

            if status == PAY_FAILED:
                job.mark_failed(status)
                await self._emit(self._events, PaymentVerificationFailed(job.transaction_ref, result.data or {}))
                logger.info("verification_definitively_failed", transaction_ref=job.transaction_ref, attempts=attempt)
                break

            job.mark_retrying(status)
            if job.attempts >= budget:
                job.mark_gave_up(status)
                logger.error(
                    "verification_gave_up",
                    transaction_ref=job.transaction_ref,
                    attempts=job.attempts,
                    last_status=status,
                )
                await self._emit(
                    self._alerts,
                    PaymentVerificationGaveUp(job.transaction_ref, job.attempts, status, job.webhook_data),
                )
                break

            if self._cancelled(job):
                break
            delay = backoff_delay(self._schedule, attempt)
            logger.warning(
                "verification_retry_scheduled",
                transaction_ref=job.transaction_ref,
                attempt=attempt,
                status=status,
                delay=delay,
            )
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                if self._cancelled(job):
                    break
                raise
        return job

    async def _emit(self, sink: EventSink, event: PaymentEvent) -> None:
        await sink.emit(event.name, event.to_payload())


__all__ = ["VerificationWorker", "job_view"]
