import pytest

from domain.common.exceptions import InvalidStateTransition
from domain.payment.verification import VerificationJob, VerificationState, backoff_delay


def test_happy_path_transitions():
    job = VerificationJob("TXN1")
    assert job.begin_attempt() == 1
    job.mark_retrying("WAIT_PAY")
    assert job.begin_attempt() == 2
    job.mark_succeeded("PAY_SUCCESS")

    assert job.is_terminal
    assert [r.state for r in job.history] == [
        VerificationState.VERIFYING,
        VerificationState.RETRYING,
        VerificationState.VERIFYING,
        VerificationState.SUCCEEDED,
    ]


def test_terminal_states_are_final():
    job = VerificationJob("TXN1")
    job.begin_attempt()
    job.mark_failed("PAY_FAILED")
    with pytest.raises(InvalidStateTransition):
        job.begin_attempt()
    with pytest.raises(InvalidStateTransition):
        job.cancel()


def test_cancel_only_between_attempts():
    job = VerificationJob("TXN1")
    job.begin_attempt()
    with pytest.raises(InvalidStateTransition):
        job.cancel()
    job.mark_retrying(None)
    job.cancel()
    assert job.state is VerificationState.CANCELLED


def test_backoff_delay_reuses_last_entry():
    assert backoff_delay([1, 2, 3], 1) == 1
    assert backoff_delay([1, 2, 3], 3) == 3
    assert backoff_delay([1, 2, 3], 10) == 3
    assert backoff_delay([], 1) == 0
