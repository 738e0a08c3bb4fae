"""Shared fixtures for the provider risk tests."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from provider_risk.utils import load_config


def raw_claim(provider, bene, start, end=None, **extra):
    """Raw claim dict using the source column names."""
    record = {
        "Provider": provider,
        "BeneID": bene,
        "ClaimStartDt": start,
        "ClaimEndDt": end or start,
    }
    record.update(extra)
    return record


@pytest.fixture
def make_claim():
    return raw_claim


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def ring_claims():
    """Two rings: PRV1-PRV2-PRV3 chained via B1/B2, and PRV4-PRV5 via B3.

    PRV6 shares B4 with PRV1 but 90 days apart, so it stays outside.
    """
    return [
        raw_claim("PRV1", "B1", "2009-01-01", ClaimID="C1"),
        raw_claim("PRV2", "B1", "2009-01-04", ClaimID="C2"),
        raw_claim("PRV2", "B2", "2009-03-01", ClaimID="C3"),
        raw_claim("PRV3", "B2", "2009-03-20", ClaimID="C4"),
        raw_claim("PRV4", "B3", "2009-05-01", ClaimID="C5"),
        raw_claim("PRV5", "B3", "2009-05-02", ClaimID="C6"),
        raw_claim("PRV1", "B4", "2009-01-01", ClaimID="C7"),
        raw_claim("PRV6", "B4", "2009-04-01", ClaimID="C8"),
    ]
