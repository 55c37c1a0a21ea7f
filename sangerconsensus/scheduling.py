"""
Work Distribution Between and Within Readsets

Consensus building can be parallelised at two levels: across readsets (one
worker process per readset) or within a readset (MAFFT threads for a single
alignment). Only one of the two levels is given more than one worker.

If the median readset is larger than the number of readsets, a few big
groups dominate the run, so readsets are processed one at a time and each
build gets all workers. Otherwise readsets are spread across workers and each
build runs single-threaded.
"""

from typing import Dict, NamedTuple, Sequence

import numpy as np


class WorkerSplit(NamedTuple):
    """Workers across readsets (outer) and within one readset build (inner)."""
    outer: int
    inner: int


def median_readset_size(readsets: Dict[str, Sequence]) -> float:
    """Median number of reads per readset (0.0 for no readsets)."""
    if not readsets:
        return 0.0
    return float(np.median([len(reads) for reads in readsets.values()]))


def choose_workers(
    parallelism: int,
    n_readsets: int,
    median_size: float,
) -> WorkerSplit:
    """
    Split a worker budget between readset-level and within-readset work.

    Parameters
    ----------
    parallelism : int
        Total number of workers available
    n_readsets : int
        Number of readsets that will be built
    median_size : float
        Median number of reads per readset

    Returns
    -------
    WorkerSplit
        (1, parallelism) when median_size > n_readsets, else (parallelism, 1)

    Examples
    --------
    >>> choose_workers(8, n_readsets=10, median_size=2)
    WorkerSplit(outer=8, inner=1)
    >>> choose_workers(8, n_readsets=3, median_size=50)
    WorkerSplit(outer=1, inner=8)
    """
    if parallelism < 1:
        raise ValueError(f"parallelism must be >= 1, got {parallelism}")

    if median_size > n_readsets:
        return WorkerSplit(outer=1, inner=parallelism)
    return WorkerSplit(outer=parallelism, inner=1)
