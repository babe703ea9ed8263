"""
Tests for reliability — retry policy.
"""

import pytest

from devbox.core.reliability.backoff import RetryPolicy
from tests.fakes import make_config


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.attempts == 3
        assert policy.schedule() == [1.0, 2.0]

    def test_first_attempt_immediate(self):
        assert RetryPolicy().delay_before(1) == 0.0

    def test_exponential_growth_capped(self):
        policy = RetryPolicy(attempts=6, base_delay=2, factor=3, max_delay=20)
        assert policy.schedule() == [2, 6, 18, 20, 20]

    def test_single(self):
        policy = RetryPolicy.single()
        assert policy.attempts == 1
        assert policy.schedule() == []

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)

    def test_jitter_bounded(self):
        policy = RetryPolicy(base_delay=10, jitter=0.5)
        for _ in range(20):
            assert 10 <= policy.delay_before(2) <= 15

    def test_from_config(self, tmp_path):
        config = make_config(tmp_path, retry_attempts=5, retry_base_delay=0.5,
                             retry_factor=3, retry_max_delay=4)
        policy = RetryPolicy.from_config(config)
        assert policy.attempts == 5
        assert policy.schedule() == [0.5, 1.5, 4, 4]
