"""
Pairwise Genetic Distances with Pairwise Deletion

Distances are computed between aligned sequences using only the positions
where both sequences have an unambiguous base (A, C, G or T). Gaps, Ns and
IUPAC ambiguity codes are excluded independently for every pair, so a gap in
one sequence does not remove that column from other comparisons.

Models:
- "raw": proportion of differing sites (p-distance)
- "K80": Kimura two-parameter distance, correcting separately for
  transitions and transversions

A distance that is undefined (no comparable sites, or a K80 log argument
that is not positive because the pair is saturated) is returned as NaN.
"""

from typing import List, Sequence, Tuple
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

VALID_BASES = frozenset("ACGT")
PURINES = frozenset("AG")
DISTANCE_MODELS = ("raw", "K80")


def _comparable_sites(seq1: str, seq2: str) -> Tuple[int, int, int]:
    """Count (sites, transitions, transversions) over positions valid in both."""
    sites = transitions = transversions = 0
    for base1, base2 in zip(seq1, seq2):
        if base1 not in VALID_BASES or base2 not in VALID_BASES:
            continue
        sites += 1
        if base1 != base2:
            if (base1 in PURINES) == (base2 in PURINES):
                transitions += 1
            else:
                transversions += 1
    return sites, transitions, transversions


def pairwise_distance(seq1: str, seq2: str, model: str = "K80") -> float:
    """
    Distance between two aligned sequences using pairwise deletion.

    Parameters
    ----------
    seq1, seq2 : str
        Aligned sequences of equal length
    model : str, optional
        "raw" or "K80" (default: "K80")

    Returns
    -------
    float
        Distance, or NaN if undefined

    Examples
    --------
    >>> pairwise_distance("ACGTACGT", "ACGTACGA", model="raw")
    0.125
    >>> pairwise_distance("ACGT----", "ACGTACGT", model="raw")
    0.0
    """
    if model not in DISTANCE_MODELS:
        raise ValueError(f"Unknown distance model: {model}")
    if len(seq1) != len(seq2):
        raise ValueError("Sequences must be aligned (equal length)")

    sites, transitions, transversions = _comparable_sites(seq1.upper(), seq2.upper())
    if sites == 0:
        return float("nan")

    p = transitions / sites
    q = transversions / sites

    if model == "raw":
        return p + q

    a = 1.0 - 2.0 * p - q
    b = 1.0 - 2.0 * q
    if a <= 0 or b <= 0:
        return float("nan")
    # -0.5 * ln(a) - 0.25 * ln(b) gives -0.0 for identical sequences
    return abs(-0.5 * math.log(a) - 0.25 * math.log(b))


def distance_matrix(sequences: Sequence[str], model: str = "K80") -> np.ndarray:
    """
    Symmetric matrix of pairwise distances.

    Parameters
    ----------
    sequences : Sequence[str]
        Aligned sequences
    model : str, optional
        "raw" or "K80" (default: "K80")

    Returns
    -------
    np.ndarray
        n x n matrix with zeros on the diagonal; undefined distances are NaN
    """
    n = len(sequences)
    matrix = np.zeros((n, n))
    for i in range(n):
        for j in range(i + 1, n):
            matrix[i, j] = matrix[j, i] = pairwise_distance(sequences[i], sequences[j], model)
    return matrix


def mean_pairwise_distance(sequences: Sequence[str], model: str = "raw") -> float:
    """
    Mean of the defined pairwise distances (NaN if none are defined).
    """
    if len(sequences) < 2:
        return float("nan")
    matrix = distance_matrix(sequences, model)
    upper = matrix[np.triu_indices(len(sequences), k=1)]
    finite = upper[np.isfinite(upper)]
    if len(finite) == 0:
        return float("nan")
    return float(np.mean(finite))


def lower_triangle(matrix: np.ndarray) -> List[List[float]]:
    """Lower triangle including the diagonal, as used by Bio.Phylo DistanceMatrix."""
    return [[float(matrix[i, j]) for j in range(i + 1)] for i in range(len(matrix))]
