"""Entry points for the cluster query and the scoring query.

Callers pass already-fetched raw records. Nothing here opens a connection
or talks to the scoring model; :func:`build_payload` only shapes the
vector as the model expects it (``{"data": [[f1, ..., f14]]}``).
"""

import argparse
import json
import logging
from typing import Iterable, List, Mapping, Optional

import numpy as np

from provider_risk.collusion_graph import build_collusion_graph, extract_cluster, validate_day_window
from provider_risk.data_loader import load_claims
from provider_risk.feature_aggregation import N_FEATURES, AggregationPolicy, aggregate
from provider_risk.normalization import normalize_identifier, normalize_records
from provider_risk.utils import load_config, setup_logging

logger = logging.getLogger("provider_risk")

NOT_IN_RING_REASON = "Provider not in suspicious clusters"


class MissingIdentifierError(ValueError):
    """A required provider or claim identifier is absent."""


def normalize_provider_id(value) -> str:
    """Trim and upper-case a provider id; reject empty values."""
    provider_id = normalize_identifier(value, upper=True)
    if provider_id is None:
        raise MissingIdentifierError("provider_id required")
    return provider_id


def parse_day_window(value, config: Optional[dict] = None) -> float:
    """Resolve the day window from a query parameter or the config default."""
    if value is None:
        if config is None:
            config = load_config()
        value = (config.get("graph", {}) or {}).get("day_window", 30)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ValueError(f"day_window must be numeric, got {value!r}") from None
    return validate_day_window(value)


def build_payload(vector) -> dict:
    """Wrap a feature vector as a single row for the scoring model."""
    row = [float(x) for x in np.asarray(vector, dtype=np.float64).ravel()]
    if len(row) != N_FEATURES:
        raise ValueError(f"Expected {N_FEATURES} features, got {len(row)}")
    return {"data": [row]}


def cluster_query(
    raw_records: Iterable[Mapping],
    provider_id,
    day_window=None,
    n_jobs: Optional[int] = None,
    config: Optional[dict] = None,
) -> dict:
    """Find the collusion ring containing a provider.

    Args:
        raw_records: Raw claim records across all providers.
        provider_id: Target provider; trimmed and upper-cased.
        day_window: Maximum claim-start gap in days. If None, uses config.
        n_jobs: joblib workers for graph construction. If None, uses config.
        config: Configuration dictionary.

    Returns:
        Result dict with ``in_ring`` False and a reason, or ``in_ring`` True
        with the cluster size, sorted members and suspicious links.

    Raises:
        MissingIdentifierError: If ``provider_id`` is empty.
    """
    provider_id = normalize_provider_id(provider_id)
    if config is None and (day_window is None or n_jobs is None):
        config = load_config()
    window = parse_day_window(day_window, config)
    logger.info(f"Cluster query for {provider_id} (day_window={window})")

    records = normalize_records(raw_records)
    G = build_collusion_graph(records, day_window=window, n_jobs=n_jobs, config=config)
    cluster = extract_cluster(G, provider_id)

    if not cluster["in_ring"]:
        logger.info(f"Provider {provider_id} not in suspicious clusters")
        return {"provider_id": provider_id, "in_ring": False, "reason": NOT_IN_RING_REASON}

    return {
        "provider_id": provider_id,
        "in_ring": True,
        "cluster_size": len(cluster["members"]),
        "providers_in_cluster": sorted(cluster["members"]),
        "suspicious_links": cluster["links"],
    }


def _scoring_result(provider_id, vector, explain) -> dict:
    return {
        "provider_id": provider_id,
        "vector": [float(x) for x in vector],
        "payload": build_payload(vector),
        "explain": explain,
    }


def scoring_query(
    provider_id,
    raw_records: Iterable[Mapping],
    policy: Optional[AggregationPolicy] = None,
    config: Optional[dict] = None,
) -> dict:
    """Build the model payload and explain record for one provider.

    Args:
        provider_id: Provider whose history is supplied.
        raw_records: The provider's full raw claim history.
        policy: Aggregation policy. If None, read from config.
        config: Configuration dictionary.

    Returns:
        Dict with ``provider_id``, ``vector``, ``payload`` and ``explain``.
    """
    provider_id = normalize_provider_id(provider_id)
    records = normalize_records(raw_records)
    vector, explain = aggregate(provider_id, records, policy=policy, config=config)
    return _scoring_result(provider_id, vector, explain)


def scoring_query_for_claim(
    claim_id,
    raw_records: Iterable[Mapping],
    policy: Optional[AggregationPolicy] = None,
    config: Optional[dict] = None,
) -> dict:
    """Resolve a claim's provider and aggregate that provider's history.

    ``raw_records`` must contain the claim and the provider's history. An
    unknown claim yields a zero vector with a reason rather than an error.
    """
    claim_id = normalize_identifier(claim_id)
    if claim_id is None:
        raise MissingIdentifierError("claim_id required")

    records = normalize_records(raw_records)
    claim = next((r for r in records if r.claim_id == claim_id and r.provider), None)
    if claim is None:
        logger.info(f"Claim {claim_id} not found")
        explain = {"provider_id": None, "reason": f"Claim {claim_id} not found"}
        result = _scoring_result(None, np.zeros(N_FEATURES), explain)
        result["claim_id"] = claim_id
        return result

    history = [r for r in records if r.provider == claim.provider]
    vector, explain = aggregate(claim.provider, history, policy=policy, config=config)
    result = _scoring_result(claim.provider, vector, explain)
    result["claim_id"] = claim_id
    return result


def main(argv: Optional[List[str]] = None) -> None:
    setup_logging()
    parser = argparse.ArgumentParser(description="Provider ring and feature queries")
    parser.add_argument("--config", type=str, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p_cluster = sub.add_parser("cluster", help="Find the collusion ring of a provider")
    p_cluster.add_argument("--claims", required=True, help="CSV or parquet claims file")
    p_cluster.add_argument("--provider", required=True)
    p_cluster.add_argument("--days-window", type=float, default=None)
    p_cluster.add_argument("--n-jobs", type=int, default=None)

    p_score = sub.add_parser("score", help="Build the model feature vector")
    p_score.add_argument("--claims", required=True, help="CSV or parquet claims file")
    target = p_score.add_mutually_exclusive_group(required=True)
    target.add_argument("--provider")
    target.add_argument("--claim-id")

    args = parser.parse_args(argv)
    config = load_config(args.config)
    raw_records = load_claims(args.claims, config=config)

    if args.command == "cluster":
        result = cluster_query(raw_records, args.provider, day_window=args.days_window,
                               n_jobs=args.n_jobs, config=config)
    elif args.claim_id:
        result = scoring_query_for_claim(args.claim_id, raw_records, config=config)
    else:
        provider_id = normalize_provider_id(args.provider)
        history = [r for r in raw_records
                   if normalize_identifier(r.get("Provider"), upper=True) == provider_id]
        result = scoring_query(provider_id, history, config=config)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
