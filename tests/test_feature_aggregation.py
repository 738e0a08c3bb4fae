"""Tests for the 14-feature provider vector."""

import math

import numpy as np
import pandas as pd
import pytest

from provider_risk.feature_aggregation import (
    FEATURE_NAMES,
    N_FEATURES,
    NO_CLAIMS_REASON,
    AggregationPolicy,
    age_in_years,
    aggregate,
    smoothed_ratio,
)
from provider_risk.normalization import N_CHRONIC, ClaimRecord, Gender


def ts(value):
    return pd.Timestamp(value, tz="UTC")


def claim(bene="B1", amount=None, **kwargs):
    return ClaimRecord(provider="P1", beneficiary=bene, reimbursed_amount=amount, **kwargs)


def flags(*on):
    return tuple(1 if i in on else 0 for i in range(N_CHRONIC))


def feature(vector, name):
    return vector[FEATURE_NAMES.index(name)]


@pytest.fixture
def policy():
    return AggregationPolicy()


class TestDegenerate:
    """Tests for empty histories and vector layout."""

    def test_empty_history_is_zero_vector(self, policy):
        vector, explain = aggregate("P1", [], policy=policy)
        assert vector.shape == (N_FEATURES,)
        assert not vector.any()
        assert explain["reason"] == NO_CLAIMS_REASON

    def test_vector_order_and_type(self, policy):
        vector, explain = aggregate("P1", [claim(amount=10.0)], policy=policy)
        assert len(FEATURE_NAMES) == 14
        assert vector.dtype == np.float64
        for i, name in enumerate(FEATURE_NAMES):
            assert explain[name] == vector[i]


class TestAmounts:
    """Tests for reimbursement amount statistics."""

    def test_amount_statistics(self, policy):
        records = [claim("B1", 100.0), claim("B2", 200.0), claim("B3", 300.0)]
        vector, _ = aggregate("P1", records, policy=policy)

        assert feature(vector, "total_claims") == 3
        assert feature(vector, "total_beneficiaries") == 3
        assert feature(vector, "avg_claim_amount") == pytest.approx(200.0)
        assert feature(vector, "max_claim_amount") == 300.0
        assert feature(vector, "std_claim_amount") == pytest.approx(81.6497, abs=1e-4)
        assert feature(vector, "max_to_avg_claim_ratio") == pytest.approx(300 / 201)
        assert feature(vector, "claims_per_beneficiary") == pytest.approx(3 / 4)

    def test_identical_amounts_have_zero_std(self, policy):
        records = [claim(amount=0.1) for _ in range(7)]
        vector, _ = aggregate("P1", records, policy=policy)
        assert feature(vector, "std_claim_amount") >= 0.0
        assert feature(vector, "std_claim_amount") == pytest.approx(0.0, abs=1e-9)

    def test_std_stable_for_large_amounts(self, policy):
        records = [claim(amount=1e9 + d) for d in (0.0, 1.0, 2.0)]
        vector, _ = aggregate("P1", records, policy=policy)
        assert feature(vector, "std_claim_amount") == pytest.approx(math.sqrt(2 / 3), rel=1e-6)

    def test_missing_amounts_excluded(self, policy):
        records = [claim(amount=100.0), claim(amount=None), claim(amount=300.0)]
        vector, explain = aggregate("P1", records, policy=policy)
        assert feature(vector, "avg_claim_amount") == pytest.approx(200.0)
        assert explain["amount_count"] == 2

    def test_missing_amounts_as_zero(self):
        records = [claim(amount=100.0), claim(amount=None), claim(amount=300.0)]
        vector, explain = aggregate("P1", records, policy=AggregationPolicy(missing_amounts="zero"))
        assert feature(vector, "avg_claim_amount") == pytest.approx(400.0 / 3)
        assert explain["amount_count"] == 3

    def test_no_amounts_at_all(self, policy):
        vector, _ = aggregate("P1", [claim(), claim()], policy=policy)
        assert feature(vector, "avg_claim_amount") == 0.0
        assert feature(vector, "max_claim_amount") == 0.0
        assert feature(vector, "max_to_avg_claim_ratio") == 0.0


class TestDatesAndDemographics:
    """Tests for stay length, age and gender features."""

    def test_length_of_stay_skips_incomplete(self, policy):
        records = [
            claim(claim_start=ts("2009-01-01"), claim_end=ts("2009-01-05")),
            claim(claim_start=ts("2009-02-01")),
        ]
        vector, explain = aggregate("P1", records, policy=policy)
        assert feature(vector, "avg_length_of_stay") == pytest.approx(4.0)
        assert explain["stay_count"] == 1

    def test_age_uses_birthday_rollover(self, policy):
        dob = ts("1950-06-15")
        records = [
            claim(date_of_birth=dob, claim_start=ts("2009-06-14")),
            claim(date_of_birth=dob, claim_start=ts("2009-06-15")),
            claim(date_of_birth=dob),
        ]
        vector, explain = aggregate("P1", records, policy=policy)
        assert feature(vector, "avg_beneficiary_age") == pytest.approx(58.5)
        assert explain["age_count"] == 2

    def test_age_in_years(self):
        assert age_in_years(ts("2000-02-29"), ts("2009-02-28")) == 8
        assert age_in_years(ts("2000-02-29"), ts("2009-03-01")) == 9
        assert age_in_years(ts("1940-12-31"), ts("2009-01-01")) == 68

    def test_gender_shares(self, policy):
        genders = [Gender.MALE] * 3 + [Gender.FEMALE, Gender.UNKNOWN]
        vector, _ = aggregate("P1", [claim(gender=g) for g in genders], policy=policy)
        assert feature(vector, "pct_male") == pytest.approx(0.75)
        assert feature(vector, "pct_female") == pytest.approx(0.25)

    def test_no_known_gender(self, policy):
        vector, _ = aggregate("P1", [claim(), claim()], policy=policy)
        assert feature(vector, "pct_male") == 0.0
        assert feature(vector, "pct_female") == 0.0

    def test_distinct_diagnoses(self, policy):
        records = [claim(diagnosis_code=c) for c in ["201", "201", "750", None]]
        vector, _ = aggregate("P1", records, policy=policy)
        assert feature(vector, "distinct_diagnoses") == 2


class TestChronicConditions:
    """Tests for the chronic-condition average."""

    @pytest.fixture
    def records(self):
        return [
            claim("B1", chronic_flags=flags(0)),
            claim("B1", chronic_flags=flags(1)),
            claim("B2", chronic_flags=flags()),
        ]

    def test_per_beneficiary(self, records, policy):
        vector, _ = aggregate("P1", records, policy=policy)
        # B1 -> conditions 0 and 1, B2 -> none: two dimensions at 0.5
        assert feature(vector, "avg_chronic_conditions") == pytest.approx(1.0 / N_CHRONIC)

    def test_per_claim(self, records):
        vector, _ = aggregate("P1", records, policy=AggregationPolicy(chronic_conditions="per_claim"))
        assert feature(vector, "avg_chronic_conditions") == pytest.approx(2.0 / (3 * N_CHRONIC))


class TestInpatientRatio:
    """Tests for the inpatient/outpatient ratio."""

    @pytest.fixture
    def records(self):
        adm = ts("2009-01-01")
        return [claim(admission_date=adm), claim(admission_date=adm), claim(), claim()]

    def test_dynamic(self, records, policy):
        vector, explain = aggregate("P1", records, policy=policy)
        assert feature(vector, "inpatient_outpatient_ratio") == pytest.approx(2 / 3)
        assert explain["inpatient_count"] == 2
        assert explain["outpatient_count"] == 2

    def test_frozen(self, records):
        vector, _ = aggregate("P1", records, policy=AggregationPolicy(io_ratio="frozen"))
        assert feature(vector, "inpatient_outpatient_ratio") == 1.0

    def test_frozen_custom_constant(self, records):
        frozen = AggregationPolicy(io_ratio="frozen", io_ratio_constant=0.5)
        vector, _ = aggregate("P1", records, policy=frozen)
        assert feature(vector, "inpatient_outpatient_ratio") == 0.5


class TestPolicy:
    """Tests for aggregation policy validation and loading."""

    def test_defaults(self):
        policy = AggregationPolicy()
        assert policy.missing_amounts == "exclude"
        assert policy.chronic_conditions == "per_beneficiary"
        assert policy.io_ratio == "dynamic"

    @pytest.mark.parametrize("kwargs", [
        {"missing_amounts": "drop"},
        {"chronic_conditions": "per_provider"},
        {"io_ratio": "constant"},
    ])
    def test_unknown_policy_rejected(self, kwargs):
        with pytest.raises(ValueError):
            AggregationPolicy(**kwargs)

    def test_from_config(self):
        cfg = {"aggregation": {"io_ratio": "frozen", "io_ratio_constant": 2}}
        policy = AggregationPolicy.from_config(cfg)
        assert policy.io_ratio == "frozen"
        assert policy.io_ratio_constant == 2.0
        assert policy.missing_amounts == "exclude"

    def test_from_project_config(self, config):
        assert AggregationPolicy.from_config(config) == AggregationPolicy()

    def test_explain_records_policy(self, policy):
        _, explain = aggregate("P1", [claim()], policy=policy)
        assert explain["policy"]["io_ratio"] == "dynamic"

    def test_smoothed_ratio(self):
        assert smoothed_ratio(3, 0) == 3.0
        assert smoothed_ratio(0, 0) == 0.0


class TestDeterminism:
    """Tests for order-independent aggregation."""

    def test_repeated_calls_identical_and_input_untouched(self, policy):
        records = [
            claim("B1", 123.45, claim_start=ts("2009-01-01"), claim_end=ts("2009-01-03"),
                  date_of_birth=ts("1940-03-02"), gender=Gender.FEMALE,
                  chronic_flags=flags(2, 5)),
            claim("B2", 0.3, admission_date=ts("2009-02-02"), gender=Gender.MALE),
            claim("B1", None, diagnosis_code="882"),
        ]
        snapshot = list(records)

        v1, e1 = aggregate("P1", records, policy=policy)
        v2, e2 = aggregate("P1", records, policy=policy)

        assert v1.tobytes() == v2.tobytes()
        assert e1 == e2
        assert records == snapshot
        assert all(math.isfinite(x) for x in v1)
