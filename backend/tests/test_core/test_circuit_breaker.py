import logging

from coach_core.core.circuit_breaker import CircuitBreaker, CircuitState


def _breaker(clock, threshold=3):
    return CircuitBreaker("memory", failure_threshold=threshold, reset_timeout_ms=8000, clock=clock)


def test_starts_closed(clock):
    """A new breaker admits requests."""
    breaker = _breaker(clock)
    assert breaker.state == CircuitState.closed
    assert breaker.can_request() is True
    assert breaker.failures == 0


def test_opens_after_threshold_failures(clock):
    """Three consecutive failures open the circuit and block requests."""
    breaker = _breaker(clock)
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == CircuitState.closed
    breaker.record_failure()
    assert breaker.state == CircuitState.open
    assert breaker.can_request() is False


def test_success_resets_failure_count(clock):
    """Failures must be consecutive to trip the breaker."""
    breaker = _breaker(clock)
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    assert breaker.state == CircuitState.closed
    assert breaker.failures == 1


def test_stays_open_until_reset_timeout(clock):
    """Requests are denied until the reset timeout elapses."""
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.record_failure()
    clock.advance_ms(7999)
    assert breaker.can_request() is False
    assert breaker.state == CircuitState.open


def test_half_open_admits_single_call(clock):
    """After the timeout exactly one trial call is let through."""
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.record_failure()
    clock.advance_ms(8000)
    assert breaker.can_request() is True
    assert breaker.state == CircuitState.half_open
    assert breaker.can_request() is False


def test_failed_trial_reopens_and_restarts_timer(clock):
    """3 failures -> open; 8s later half-open; trial fails -> open again."""
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.record_failure()
    clock.advance_ms(8000)
    assert breaker.can_request() is True
    breaker.record_failure()
    assert breaker.state == CircuitState.open
    clock.advance_ms(4000)
    assert breaker.can_request() is False
    clock.advance_ms(4000)
    assert breaker.can_request() is True


def test_successful_trial_closes(clock):
    """A successful half-open trial closes the circuit and zeroes failures."""
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.record_failure()
    clock.advance_ms(8000)
    breaker.can_request()
    breaker.record_success()
    assert breaker.state == CircuitState.closed
    assert breaker.failures == 0
    assert breaker.can_request() is True


def test_opening_logs_warning(clock, caplog):
    """Opening the circuit emits a warning on the breaker logger."""
    breaker = _breaker(clock, threshold=1)
    with caplog.at_level(logging.WARNING, logger="potok.breaker"):
        breaker.record_failure()
    assert "circuit_open name=memory" in caplog.text


def test_release_trial_hands_back_half_open_slot(clock):
    """A trial call that ended without an outcome can be taken again."""
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.record_failure()
    clock.advance_ms(8000)
    assert breaker.can_request() is True
    assert breaker.can_request() is False
    breaker.release_trial()
    assert breaker.state == CircuitState.half_open
    assert breaker.can_request() is True


def test_release_trial_is_noop_when_closed_or_open(clock):
    breaker = _breaker(clock)
    breaker.release_trial()
    assert breaker.state == CircuitState.closed
    for _ in range(3):
        breaker.record_failure()
    breaker.release_trial()
    assert breaker.state == CircuitState.open
    assert breaker.can_request() is False
