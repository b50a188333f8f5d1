from datetime import timedelta

import pytest

from src.engines.recovery.backoff import BackoffPolicy


@pytest.mark.parametrize("attempt,expected_ms", [
    (1, 1000),
    (2, 2000),
    (3, 4000),
    (5, 16000),
    (6, 30000),
    (20, 30000),
])
def test_delay_doubles_until_cap(attempt, expected_ms):
    assert BackoffPolicy().next_delay_ms(attempt) == expected_ms


def test_zero_attempt_uses_base_delay():
    assert BackoffPolicy().next_delay_ms(0) == 1000


def test_custom_multiplier():
    policy = BackoffPolicy(base_delay_ms=500, max_delay_ms=10000, multiplier=3)
    assert [policy.next_delay_ms(n) for n in (1, 2, 3, 4)] == [500, 1500, 4500, 10000]


def test_next_delay_is_timedelta():
    assert BackoffPolicy().next_delay(2) == timedelta(seconds=2)
