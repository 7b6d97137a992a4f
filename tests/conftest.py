"""Shared test fixtures for loadbench tests."""

import pytest

from loadbench.engine.models import Statistic, TestConfig


@pytest.fixture
def test_config() -> TestConfig:
    return TestConfig(
        test_name="scripted",
        server_name="localhost",
        server_port=8443,
        verify_tls=False,
        connections=2,
        warmup_duration=0.0,
        test_duration=0.5,
        target_qps=20,
    )


@pytest.fixture
def make_config(test_config):
    def _make(**overrides) -> TestConfig:
        return test_config.model_copy(update=overrides)

    return _make


@pytest.fixture
def sample_statistic() -> Statistic:
    return Statistic(
        count=120,
        rate=39.87,
        mean=12_500_000.0,
        min=8_100_000.0,
        max=45_000_000.0,
        p50=11_000_000.0,
        p75=13_250_000.5,
        p90=17_000_000.0,
        p95=21_400_000.0,
        p99=40_100_000.25,
    )
