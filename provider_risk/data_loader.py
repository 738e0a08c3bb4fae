"""Load raw claim records from CSV or parquet extracts."""

import logging
from pathlib import Path
from typing import Generator, List, Optional, Union

import pandas as pd

from provider_risk.utils import load_config

logger = logging.getLogger("provider_risk")

# Identifier columns are read as strings so leading zeros survive
ID_COLUMNS = {
    "Provider": str,
    "BeneID": str,
    "ClaimID": str,
    "DiagnosisGroupCode": str,
}


def iter_claim_chunks(
    filepath: Union[str, Path],
    chunksize: Optional[int] = None,
    config: Optional[dict] = None,
) -> Generator[pd.DataFrame, None, None]:
    """Yield chunks of a claims CSV with identifier columns kept as strings.

    Args:
        filepath: Path to CSV.
        chunksize: Rows per chunk. If None, uses config.
        config: Configuration dictionary.

    Yields:
        pandas DataFrame chunks.
    """
    if chunksize is None:
        if config is None:
            config = load_config()
        chunksize = config.get("data", {}).get("chunksize", 500000)

    reader = pd.read_csv(
        filepath,
        chunksize=chunksize,
        dtype=ID_COLUMNS,
        na_values=["", "NA", "NULL"],
    )
    for chunk in reader:
        yield chunk


def frame_to_records(df: pd.DataFrame) -> List[dict]:
    """Convert a DataFrame to raw record dicts with NaN replaced by None."""
    df = df.astype(object).where(df.notna(), None)
    return df.to_dict(orient="records")


def load_claims(
    filepath: Union[str, Path],
    chunksize: Optional[int] = None,
    config: Optional[dict] = None,
) -> List[dict]:
    """Load a claims extract into raw record dicts for the normalizer.

    Args:
        filepath: ``.csv`` or ``.parquet`` file.
        chunksize: CSV rows per chunk. If None, uses config.
        config: Configuration dictionary.

    Returns:
        List of raw record dicts keyed by source column name.

    Raises:
        ValueError: If the file extension is not supported.
    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix == ".parquet":
        records = frame_to_records(pd.read_parquet(filepath))
    elif suffix == ".csv":
        records = []
        for chunk in iter_claim_chunks(filepath, chunksize=chunksize, config=config):
            records.extend(frame_to_records(chunk))
    else:
        raise ValueError(f"Unsupported claims file type: {filepath.suffix}")

    logger.info(f"Loaded {len(records):,} claim records from {filepath.name}")
    return records
