"""Record normalization: dates, amounts, gender and chronic-condition coercion.

Raw claim records arrive with mixed encodings (dates as strings or epoch
milliseconds, gender as ``1``/``"M"``/``"Male"``, chronic flags as ``1`` or
``"Yes (1)"``). Everything is converted once into a :class:`ClaimRecord` so
downstream code never inspects raw encodings. Unparseable fields fall back
to a neutral value; normalization never raises for record content.
"""

import logging
import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

logger = logging.getLogger("provider_risk")

# (canonical column, accepted spellings) in model order
CHRONIC_CONDITIONS = [
    ("ChronicCond_Alzheimer", ("ChronicCond_Alzheimer",)),
    ("ChronicCond_HeartFailure", ("ChronicCond_HeartFailure", "ChronicCond_Heartfailure")),
    ("ChronicCond_KidneyDisease", ("ChronicCond_KidneyDisease",)),
    ("ChronicCond_Cancer", ("ChronicCond_Cancer",)),
    ("ChronicCond_ObstrPulmonary", ("ChronicCond_ObstrPulmonary",)),
    ("ChronicCond_Depression", ("ChronicCond_Depression",)),
    ("ChronicCond_Diabetes", ("ChronicCond_Diabetes",)),
    ("ChronicCond_IschemicHeart", ("ChronicCond_IschemicHeart",)),
    ("ChronicCond_Osteoporosis", ("ChronicCond_Osteoporosis", "ChronicCond_Osteoporasis")),
    ("ChronicCond_rheumatoidarthritis", ("ChronicCond_rheumatoidarthritis",)),
    ("ChronicCond_stroke", ("ChronicCond_stroke",)),
]
N_CHRONIC = len(CHRONIC_CONDITIONS)

MALE_CODES = frozenset({"1", "m"})
FEMALE_CODES = frozenset({"2", "f"})
TRUTHY_CODES = frozenset({"1", "1.0", "y", "true"})


class Gender(Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClaimRecord:
    """A single normalized claim line."""

    provider: Optional[str] = None
    beneficiary: Optional[str] = None
    claim_id: Optional[str] = None
    claim_start: Optional[pd.Timestamp] = None
    claim_end: Optional[pd.Timestamp] = None
    date_of_birth: Optional[pd.Timestamp] = None
    admission_date: Optional[pd.Timestamp] = None
    reimbursed_amount: Optional[float] = None
    diagnosis_code: Optional[str] = None
    gender: Gender = Gender.UNKNOWN
    chronic_flags: Tuple[int, ...] = field(default=(0,) * N_CHRONIC)

    @property
    def is_inpatient(self) -> bool:
        return self.admission_date is not None


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NaT or value is pd.NA:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def parse_date(value: Any) -> Optional[pd.Timestamp]:
    """Parse a date-like value to a UTC timestamp.

    Numbers are treated as epoch milliseconds. Missing or unparseable
    values return None.
    """
    if _is_missing(value) or isinstance(value, bool):
        return None
    try:
        if isinstance(value, numbers.Real):
            ts = pd.to_datetime(value, unit="ms", utc=True)
        elif isinstance(value, str):
            ts = pd.to_datetime(value.strip(), utc=True, errors="coerce")
        else:
            ts = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError, OverflowError) as exc:
        logger.debug(f"Unparseable date {value!r} ({exc}); using None")
        return None
    if not isinstance(ts, pd.Timestamp):
        logger.debug(f"Unparseable date {value!r}; using None")
        return None
    return ts


def parse_amount(value: Any) -> Optional[float]:
    """Coerce a reimbursement amount to a finite non-negative float, else None."""
    if _is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        amount = float(pd.to_numeric(value, errors="coerce"))
    except (TypeError, ValueError):
        amount = math.nan
    if not math.isfinite(amount) or amount < 0:
        logger.debug(f"Unusable amount {value!r}; using None")
        return None
    return amount


def parse_gender(value: Any) -> Gender:
    """Map the known gender encodings to :class:`Gender`.

    Female markers are checked first since "female" contains "male".
    """
    if _is_missing(value) or isinstance(value, bool):
        return Gender.UNKNOWN
    if isinstance(value, numbers.Real):
        if value == 1:
            return Gender.MALE
        if value == 2:
            return Gender.FEMALE
        return Gender.UNKNOWN
    text = str(value).strip().lower()
    if text in FEMALE_CODES or "female" in text:
        return Gender.FEMALE
    if text in MALE_CODES or "male" in text:
        return Gender.MALE
    return Gender.UNKNOWN


def parse_chronic_flag(value: Any) -> int:
    """Return 1 for a truthy chronic-condition marker, 0 for anything else."""
    if _is_missing(value):
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, numbers.Real):
        return 1 if value == 1 else 0
    text = str(value).strip().lower()
    if text in TRUTHY_CODES or "yes" in text:
        return 1
    return 0


def normalize_identifier(value: Any, upper: bool = False) -> Optional[str]:
    """Trim an identifier (optionally upper-casing it); empty becomes None."""
    if _is_missing(value):
        return None
    text = str(value).strip()
    if upper:
        text = text.upper()
    return text or None


def _chronic_flags(raw: Mapping) -> Tuple[int, ...]:
    flags = []
    for _, aliases in CHRONIC_CONDITIONS:
        value = None
        for alias in aliases:
            if not _is_missing(raw.get(alias)):
                value = raw.get(alias)
                break
        flags.append(parse_chronic_flag(value))
    return tuple(flags)


def normalize_record(raw: Optional[Mapping]) -> ClaimRecord:
    """Normalize one raw claim mapping into a :class:`ClaimRecord`.

    Args:
        raw: Mapping keyed by the source column names (``Provider``,
            ``BeneID``, ``ClaimStartDt``, ...). None is treated as empty.

    Returns:
        ClaimRecord with every malformed field replaced by its neutral value.
    """
    if raw is None:
        raw = {}
    return ClaimRecord(
        provider=normalize_identifier(raw.get("Provider"), upper=True),
        beneficiary=normalize_identifier(raw.get("BeneID")),
        claim_id=normalize_identifier(raw.get("ClaimID")),
        claim_start=parse_date(raw.get("ClaimStartDt")),
        claim_end=parse_date(raw.get("ClaimEndDt")),
        date_of_birth=parse_date(raw.get("DOB")),
        admission_date=parse_date(raw.get("AdmissionDt")),
        reimbursed_amount=parse_amount(raw.get("InscClaimAmtReimbursed")),
        diagnosis_code=normalize_identifier(raw.get("DiagnosisGroupCode")),
        gender=parse_gender(raw.get("Gender")),
        chronic_flags=_chronic_flags(raw),
    )


def normalize_records(raws: Iterable[Optional[Mapping]]) -> List[ClaimRecord]:
    """Normalize a collection of raw claim mappings."""
    return [normalize_record(raw) for raw in raws]
