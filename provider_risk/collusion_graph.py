"""Provider collusion graph over shared beneficiaries, and ring extraction.

Two providers are linked when they bill the same beneficiary with claim
start dates no more than ``day_window`` days apart. Each edge keeps the set
of beneficiaries that produced it. A ring is the connected component that
contains a query provider.

Construction cost is quadratic in the size of the largest beneficiary
group. Groups are sorted by claim start so each record is only compared
with partners inside its window, but a beneficiary with thousands of claims
inside one window still costs O(g^2).
"""

import bisect
import logging
import math
import numbers
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import networkx as nx
from joblib import Parallel, delayed, effective_n_jobs

from provider_risk.normalization import ClaimRecord
from provider_risk.utils import load_config

logger = logging.getLogger("provider_risk")

NS_PER_DAY = 86_400 * 10**9

# (beneficiary, sorted claim starts in ns, providers aligned with starts)
BeneficiaryGroup = Tuple[str, List[int], List[str]]
EdgeMap = Dict[Tuple[str, str], Set[str]]


def edge_key(provider_a: str, provider_b: str) -> Tuple[str, str]:
    """Canonical (sorted) key for an unordered provider pair."""
    return (provider_a, provider_b) if provider_a <= provider_b else (provider_b, provider_a)


def validate_day_window(day_window) -> float:
    """Return ``day_window`` as a float, rejecting negative or non-numeric values."""
    if isinstance(day_window, bool) or not isinstance(day_window, numbers.Real):
        raise ValueError(f"day_window must be a number, got {day_window!r}")
    day_window = float(day_window)
    if not math.isfinite(day_window) or day_window < 0:
        raise ValueError(f"day_window must be a finite non-negative number, got {day_window}")
    return day_window


def group_by_beneficiary(records: Iterable[ClaimRecord]) -> List[BeneficiaryGroup]:
    """Group eligible records by beneficiary, each group sorted by claim start.

    Records without a provider, beneficiary or claim start cannot form an
    edge and are dropped. Single-record groups are dropped too.
    """
    grouped: Dict[str, List[Tuple[int, str]]] = defaultdict(list)
    for rec in records:
        if rec.provider is None or rec.beneficiary is None or rec.claim_start is None:
            continue
        grouped[rec.beneficiary].append((rec.claim_start.value, rec.provider))

    groups = []
    for beneficiary in sorted(grouped):
        rows = grouped[beneficiary]
        if len(rows) < 2:
            continue
        rows.sort()
        groups.append((beneficiary, [r[0] for r in rows], [r[1] for r in rows]))
    return groups


def scan_groups(groups: Sequence[BeneficiaryGroup], window_ns: int) -> EdgeMap:
    """Find provider pairs sharing a beneficiary within the window.

    Args:
        groups: Output of :func:`group_by_beneficiary`.
        window_ns: Maximum claim-start gap in nanoseconds.

    Returns:
        Mapping of canonical provider pair to the beneficiaries linking them.
    """
    edges: EdgeMap = defaultdict(set)
    for beneficiary, starts, providers in groups:
        for i in range(len(starts)):
            hi = bisect.bisect_right(starts, starts[i] + window_ns)
            for j in range(i + 1, hi):
                if providers[i] != providers[j]:
                    edges[edge_key(providers[i], providers[j])].add(beneficiary)
    return dict(edges)


def _batches(groups: List[BeneficiaryGroup], n_batches: int) -> List[List[BeneficiaryGroup]]:
    size = max(1, math.ceil(len(groups) / n_batches))
    return [groups[i:i + size] for i in range(0, len(groups), size)]


def build_collusion_graph(
    records: Iterable[ClaimRecord],
    day_window: Optional[float] = None,
    n_jobs: Optional[int] = None,
    config: Optional[dict] = None,
) -> nx.Graph:
    """Build the provider co-occurrence graph.

    Args:
        records: Normalized claim records across all providers.
        day_window: Maximum gap in days between two claim starts. If None,
            uses ``graph.day_window`` from config.
        n_jobs: joblib worker count for the group scan. If None, uses
            ``graph.n_jobs`` from config. 1 scans in-process.
        config: Configuration dictionary.

    Returns:
        Undirected graph; each edge has a non-empty ``beneficiaries`` set.
    """
    if day_window is None or n_jobs is None:
        if config is None:
            config = load_config()
        graph_cfg = config.get("graph", {}) or {}
        if day_window is None:
            day_window = graph_cfg.get("day_window", 30)
        if n_jobs is None:
            n_jobs = graph_cfg.get("n_jobs", 1)

    window_ns = int(validate_day_window(day_window) * NS_PER_DAY)
    groups = group_by_beneficiary(records)
    logger.info(f"Beneficiary groups with 2+ eligible claims: {len(groups):,}")

    workers = effective_n_jobs(n_jobs)
    if workers > 1 and len(groups) > 1:
        edge_maps = Parallel(n_jobs=workers)(
            delayed(scan_groups)(batch, window_ns)
            for batch in _batches(groups, workers * 4)
        )
    else:
        edge_maps = [scan_groups(groups, window_ns)]

    G = nx.Graph()
    for edge_map in edge_maps:
        for (p1, p2), beneficiaries in edge_map.items():
            if G.has_edge(p1, p2):
                G.edges[p1, p2]["beneficiaries"].update(beneficiaries)
            else:
                G.add_edge(p1, p2, beneficiaries=set(beneficiaries))

    logger.info(f"Collusion graph: {G.number_of_nodes():,} providers, "
                f"{G.number_of_edges():,} edges (day_window={day_window})")
    return G


def shared_beneficiaries(G: nx.Graph, provider_a: str, provider_b: str) -> Set[str]:
    """Beneficiaries linking two providers; empty if they are not adjacent."""
    if not G.has_edge(provider_a, provider_b):
        return set()
    return set(G.edges[provider_a, provider_b]["beneficiaries"])


def extract_cluster(G: nx.Graph, provider_id: str) -> dict:
    """Return the ring (connected component) containing ``provider_id``.

    Returns:
        ``{"in_ring": False}`` if the provider has no edges, otherwise
        ``{"in_ring": True, "members": set, "links": list}`` where each link
        carries ``provider1``, ``provider2`` and ``shared_beneficiaries``.
    """
    if provider_id not in G or G.degree(provider_id) == 0:
        return {"in_ring": False}

    members = nx.node_connected_component(G, provider_id)

    links = []
    for a, b, data in G.subgraph(members).edges(data=True):
        p1, p2 = edge_key(a, b)
        links.append({
            "provider1": p1,
            "provider2": p2,
            "shared_beneficiaries": sorted(data["beneficiaries"]),
        })
    links.sort(key=lambda link: (link["provider1"], link["provider2"]))

    logger.info(f"Ring for {provider_id}: {len(members)} providers, {len(links)} links")
    return {"in_ring": True, "members": members, "links": links}
