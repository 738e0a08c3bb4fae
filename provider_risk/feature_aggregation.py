"""Provider-level feature vector for the external risk-scoring model.

The model consumes exactly 14 features in the order of ``FEATURE_NAMES``.
Three aggregation choices have no single correct answer and are exposed as
an :class:`AggregationPolicy` read from the ``aggregation`` config section:

- ``missing_amounts``: ``exclude`` drops records without a reimbursed amount
  from the amount statistics, ``zero`` counts them as 0.
- ``chronic_conditions``: ``per_beneficiary`` takes each beneficiary's
  per-condition maximum before averaging, ``per_claim`` averages over claims.
- ``io_ratio``: ``dynamic`` computes inpatient / (outpatient + 1), ``frozen``
  returns ``io_ratio_constant``.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from provider_risk.normalization import N_CHRONIC, ClaimRecord, Gender
from provider_risk.utils import load_config

logger = logging.getLogger("provider_risk")

FEATURE_NAMES = [
    "total_claims",
    "total_beneficiaries",
    "avg_claim_amount",
    "max_claim_amount",
    "std_claim_amount",
    "avg_length_of_stay",
    "distinct_diagnoses",
    "avg_beneficiary_age",
    "pct_male",
    "pct_female",
    "avg_chronic_conditions",
    "inpatient_outpatient_ratio",
    "claims_per_beneficiary",
    "max_to_avg_claim_ratio",
]
N_FEATURES = len(FEATURE_NAMES)

NO_CLAIMS_REASON = "No claims for provider"

MISSING_AMOUNT_POLICIES = ("exclude", "zero")
CHRONIC_POLICIES = ("per_beneficiary", "per_claim")
IO_RATIO_POLICIES = ("dynamic", "frozen")


@dataclass(frozen=True)
class AggregationPolicy:
    """Active choices for the ambiguous aggregation semantics."""

    missing_amounts: str = "exclude"
    chronic_conditions: str = "per_beneficiary"
    io_ratio: str = "dynamic"
    io_ratio_constant: float = 1.0

    def __post_init__(self):
        checks = [
            ("missing_amounts", self.missing_amounts, MISSING_AMOUNT_POLICIES),
            ("chronic_conditions", self.chronic_conditions, CHRONIC_POLICIES),
            ("io_ratio", self.io_ratio, IO_RATIO_POLICIES),
        ]
        for name, value, allowed in checks:
            if value not in allowed:
                raise ValueError(f"Unknown {name} policy {value!r}; expected one of {allowed}")

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "AggregationPolicy":
        """Build the policy from the ``aggregation`` config section."""
        if config is None:
            config = load_config()
        agg_cfg = config.get("aggregation", {}) or {}
        return cls(
            missing_amounts=agg_cfg.get("missing_amounts", cls.missing_amounts),
            chronic_conditions=agg_cfg.get("chronic_conditions", cls.chronic_conditions),
            io_ratio=agg_cfg.get("io_ratio", cls.io_ratio),
            io_ratio_constant=float(agg_cfg.get("io_ratio_constant", cls.io_ratio_constant)),
        )


def smoothed_ratio(numerator: float, denominator: float) -> float:
    """Divide with +1 smoothing on the denominator."""
    return numerator / (denominator + 1)


def age_in_years(date_of_birth: pd.Timestamp, at: pd.Timestamp) -> int:
    """Whole years between two dates, decremented if the birthday is still ahead."""
    age = at.year - date_of_birth.year
    if (at.month, at.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def _mean(total: float, count: int) -> float:
    return total / count if count else 0.0


def aggregate(
    provider_id: str,
    records: Sequence[ClaimRecord],
    policy: Optional[AggregationPolicy] = None,
    config: Optional[dict] = None,
) -> Tuple[np.ndarray, Dict]:
    """Build the 14-feature vector and explain record for one provider.

    Args:
        provider_id: Provider the history belongs to.
        records: The provider's full normalized claim history.
        policy: Aggregation policy. If None, read from config.
        config: Configuration dictionary.

    Returns:
        Tuple of (float64 vector of length 14, explain dict).
    """
    if policy is None:
        policy = AggregationPolicy.from_config(config)

    if not records:
        logger.info(f"No claims for provider {provider_id}; returning zero vector")
        return np.zeros(N_FEATURES), {"provider_id": provider_id, "reason": NO_CLAIMS_REASON}

    foreign = sum(1 for r in records if r.provider is not None and r.provider != provider_id)
    if foreign:
        logger.warning(f"{foreign} of {len(records)} records for {provider_id} belong to other providers")

    beneficiaries = set()
    diagnoses = set()
    amount_sum = 0.0
    # sums of (amount - shift) for the variance; shift is the first amount seen
    shift = None
    shifted_sum = shifted_sq_sum = 0.0
    amount_count = 0
    max_amount = 0.0
    stay_days = 0.0
    stay_count = 0
    age_sum = 0
    age_count = 0
    male = female = 0
    inpatient = outpatient = 0
    claim_chronic = np.zeros(N_CHRONIC)
    bene_chronic: Dict[str, np.ndarray] = {}

    for rec in records:
        amount = rec.reimbursed_amount
        if amount is None and policy.missing_amounts == "zero":
            amount = 0.0
        if amount is not None:
            if shift is None:
                shift = amount
            amount_sum += amount
            shifted_sum += amount - shift
            shifted_sq_sum += (amount - shift) ** 2
            amount_count += 1
            max_amount = max(max_amount, amount)

        if rec.beneficiary is not None:
            beneficiaries.add(rec.beneficiary)
        if rec.diagnosis_code is not None:
            diagnoses.add(rec.diagnosis_code)

        if rec.claim_start is not None and rec.claim_end is not None:
            stay_days += (rec.claim_end - rec.claim_start) / pd.Timedelta(days=1)
            stay_count += 1

        if rec.claim_start is not None and rec.date_of_birth is not None:
            age_sum += age_in_years(rec.date_of_birth, rec.claim_start)
            age_count += 1

        if rec.gender is Gender.MALE:
            male += 1
        elif rec.gender is Gender.FEMALE:
            female += 1

        if rec.is_inpatient:
            inpatient += 1
        else:
            outpatient += 1

        flags = np.asarray(rec.chronic_flags, dtype=float)
        claim_chronic += flags
        if rec.beneficiary is not None:
            prev = bene_chronic.get(rec.beneficiary)
            bene_chronic[rec.beneficiary] = flags if prev is None else np.maximum(prev, flags)

    total_claims = len(records)
    total_beneficiaries = len(beneficiaries)

    avg_claim = _mean(amount_sum, amount_count)
    shifted_mean = _mean(shifted_sum, amount_count)
    variance = _mean(shifted_sq_sum, amount_count) - shifted_mean ** 2
    std_claim = float(np.sqrt(max(variance, 0.0)))

    known_gender = male + female
    pct_male = male / known_gender if known_gender else 0.0
    pct_female = 1.0 - pct_male if known_gender else 0.0

    if policy.chronic_conditions == "per_beneficiary":
        if bene_chronic:
            per_condition = np.vstack(list(bene_chronic.values())).mean(axis=0)
            avg_chronic = float(per_condition.mean())
        else:
            avg_chronic = 0.0
    else:
        avg_chronic = float((claim_chronic / total_claims).mean())

    if policy.io_ratio == "frozen":
        io_ratio = policy.io_ratio_constant
    else:
        io_ratio = smoothed_ratio(inpatient, outpatient)

    features = {
        "total_claims": total_claims,
        "total_beneficiaries": total_beneficiaries,
        "avg_claim_amount": avg_claim,
        "max_claim_amount": max_amount,
        "std_claim_amount": std_claim,
        "avg_length_of_stay": _mean(stay_days, stay_count),
        "distinct_diagnoses": len(diagnoses),
        "avg_beneficiary_age": _mean(age_sum, age_count),
        "pct_male": pct_male,
        "pct_female": pct_female,
        "avg_chronic_conditions": avg_chronic,
        "inpatient_outpatient_ratio": io_ratio,
        "claims_per_beneficiary": smoothed_ratio(total_claims, total_beneficiaries),
        "max_to_avg_claim_ratio": smoothed_ratio(max_amount, avg_claim),
    }
    vector = np.nan_to_num(
        np.array([features[name] for name in FEATURE_NAMES], dtype=np.float64),
        nan=0.0, posinf=0.0, neginf=0.0,
    )

    explain = {"provider_id": provider_id}
    explain.update({name: float(value) for name, value in zip(FEATURE_NAMES, vector)})
    explain.update({
        "amount_count": amount_count,
        "stay_count": stay_count,
        "age_count": age_count,
        "male_count": male,
        "female_count": female,
        "inpatient_count": inpatient,
        "outpatient_count": outpatient,
        "policy": asdict(policy),
    })

    logger.info(f"Aggregated {total_claims:,} claims across {total_beneficiaries:,} "
                f"beneficiaries for provider {provider_id}")
    return vector, explain
