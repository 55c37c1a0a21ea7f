"""
Per-Consensus Summary Statistics

Rolls up read-level statistics into one summary row per consensus sequence.
For every consensus, the reads that were included in it are collected and the
minimum, maximum and median of each read metric (secondary peaks and mean
quality, raw and trimmed) are computed. These twelve columns are joined to
the consensus' own metrics by consensus name.

Only consensus sequences that were actually built (non-null) and that have at
least one included read get a summary. Rows follow the order in which the
consensus sequences were produced.
"""

from typing import Dict, List, Sequence
import logging
import math

import numpy as np

from .models import (
    READ_METRICS,
    STAT_SUFFIXES,
    ConsensusResult,
    ConsensusSummary,
    ReadRecord,
)

# Configure logging
logger = logging.getLogger(__name__)


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def summarise_metric(values: Sequence) -> Dict[str, float]:
    """
    Minimum, maximum and median of a metric, ignoring missing values.

    Returns
    -------
    Dict[str, float]
        Keys "min", "max", "med"; all NaN if there are no values

    Examples
    --------
    >>> summarise_metric([3, 1, 4, 2])
    {'min': 1.0, 'max': 4.0, 'med': 2.5}
    """
    present = [float(v) for v in values if not _is_missing(v)]
    if not present:
        return {"min": float("nan"), "max": float("nan"), "med": float("nan")}
    return {
        "min": float(np.min(present)),
        "max": float(np.max(present)),
        "med": float(np.median(present)),
    }


def read_statistics(reads: Sequence[ReadRecord]) -> Dict[str, float]:
    """Twelve min/max/median columns over a set of reads."""
    stats = {}
    for metric in READ_METRICS:
        summary = summarise_metric([getattr(read, metric) for read in reads])
        for stat in STAT_SUFFIXES:
            stats[f"{metric}_{stat}"] = summary[stat]
    return stats


def group_reads_by_consensus(read_records: Sequence[ReadRecord]) -> Dict[str, List[ReadRecord]]:
    """Reads included in a consensus, keyed by consensus name."""
    groups: Dict[str, List[ReadRecord]] = {}
    for read in read_records:
        if read.included_in_consensus and read.consensus_name is not None:
            groups.setdefault(read.consensus_name, []).append(read)
    return groups


def aggregate(
    consensus_results: Sequence[ConsensusResult],
    read_records: Sequence[ReadRecord],
) -> List[ConsensusSummary]:
    """
    Build one summary per consensus sequence.

    Parameters
    ----------
    consensus_results : Sequence[ConsensusResult]
        Results in the order they were built. Results without a consensus
        sequence are skipped.
    read_records : Sequence[ReadRecord]
        All read records, already stamped with consensus inclusion

    Returns
    -------
    List[ConsensusSummary]
        One summary per consensus name, in first-seen order
    """
    reads_by_consensus = group_reads_by_consensus(read_records)

    summaries = []
    seen = set()
    for result in consensus_results:
        name = result.readset_name
        if result.consensus is None or name in seen:
            continue
        seen.add(name)

        reads = reads_by_consensus.get(name)
        if not reads:
            logger.warning(f"Consensus {name} has no included reads; dropped from summaries")
            continue

        summaries.append(ConsensusSummary(
            consensus_name=name,
            metrics=result.metrics(),
            read_statistics=read_statistics(reads),
        ))

    logger.debug(f"Summarised {len(summaries)} consensus sequences")
    return summaries
