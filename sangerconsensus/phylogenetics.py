"""
Consensus Alignment and Guide Tree

This module aligns the consensus sequences of a run and builds a rough
neighbour-joining tree from them, to help spot problem sequences (e.g.
contaminants, mislabelled samples, reads from the wrong gene) by eye.

Workflow:
1. Align consensus sequences with MAFFT, by translation if a reference
   amino acid sequence was used for the run
2. Relabel aligned sequences with their row number in the consensus
   summary table, to keep tree tips short
3. Compute pairwise distances with pairwise deletion
4. Build a neighbour-joining tree (allowed to fail)
5. Replace negative branch lengths by their absolute values

The Guide Tree Is Not a Phylogeny:
Neighbour joining can produce negative branch lengths. These are made
positive purely so the tree draws sensibly. The result has little
biological validity and must not be used for phylogenetic inference.

Dependencies:
- MAFFT v7+ for alignment
- Biopython for distance matrices and tree construction

Example Usage:
    >>> from sangerconsensus.phylogenetics import analyze
    >>> outcome = analyze(consensus_sequences, summaries, processors=4)
    >>> if outcome.tree is not None:
    ...     Phylo.draw_ascii(outcome.tree)
"""

from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple
import copy
import logging

import numpy as np
from Bio.Align import MultipleSeqAlignment
from Bio.Phylo.BaseTree import Tree
from Bio.Phylo.TreeConstruction import DistanceMatrix, DistanceTreeConstructor
from Bio.SeqRecord import SeqRecord

from . import alignment as aligner
from .distances import distance_matrix, lower_triangle
from .errors import TreeConstructionError
from .models import ConsensusSummary

# Configure logging
logger = logging.getLogger(__name__)


class TreeOutcome(NamedTuple):
    """Guide tree, or None with the reason it could not be built."""
    tree: Optional[Tree]
    error: Optional[str] = None


class ComparativeAnalysis(NamedTuple):
    alignment: Optional[MultipleSeqAlignment]
    tree: Optional[Tree]


def relabel_alignment(
    alignment: MultipleSeqAlignment,
    summaries: Sequence[ConsensusSummary],
) -> MultipleSeqAlignment:
    """
    Replace consensus names with their 1-based row in the summary table.

    Names that are not found in the summaries keep their original id.

    Examples
    --------
    A consensus named "sample12" in the third summary row becomes "3".
    """
    positions = {summary.consensus_name: str(i + 1) for i, summary in enumerate(summaries)}

    relabeled = []
    for record in alignment:
        label = positions.get(record.id)
        if label is None:
            logger.warning(f"No summary row for aligned sequence: {record.id}")
            label = record.id
        relabeled.append(SeqRecord(record.seq, id=label, description=""))

    return MultipleSeqAlignment(relabeled)


def pairwise_distance_matrix(
    alignment: MultipleSeqAlignment,
    model: str = "K80",
) -> Tuple[List[str], np.ndarray]:
    """
    Pairwise distances between aligned sequences, with pairwise deletion.

    Returns
    -------
    Tuple[List[str], np.ndarray]
        Sequence ids and the symmetric distance matrix (NaN where undefined)
    """
    names = [record.id for record in alignment]
    sequences = [str(record.seq).upper() for record in alignment]
    return names, distance_matrix(sequences, model=model)


def fix_negative_branch_lengths(tree: Tree) -> Tree:
    """
    Copy of a tree with negative branch lengths made positive.

    Only branch lengths change; topology and labels are untouched. This is a
    display correction only.

    Examples
    --------
    Branch lengths [-0.3, 0.1, -0.05] become [0.3, 0.1, 0.05].
    """
    fixed = copy.deepcopy(tree)
    n_fixed = 0
    for clade in fixed.find_clades():
        if clade.branch_length is not None and clade.branch_length < 0:
            clade.branch_length = abs(clade.branch_length)
            n_fixed += 1
    if n_fixed:
        logger.debug(f"Made {n_fixed} negative branch lengths positive")
    return fixed


def impute_undefined_distances(matrix: np.ndarray) -> Tuple[np.ndarray, int]:
    """
    Replace undefined (non-finite) distances with the largest defined one.

    Pairwise deletion leaves a distance undefined when two sequences share
    no comparable sites. Such pairs are treated as maximally distant.

    Returns
    -------
    Tuple[np.ndarray, int]
        Copy of the matrix with undefined entries filled, and the number of
        sequence pairs that were filled

    Raises
    ------
    TreeConstructionError
        If no off-diagonal distance is defined
    """
    filled = np.array(matrix, dtype=float)
    undefined = ~np.isfinite(filled)
    np.fill_diagonal(undefined, False)
    n_pairs = int(np.count_nonzero(np.triu(undefined)))
    if n_pairs == 0:
        return filled, 0

    off_diagonal = ~np.eye(len(filled), dtype=bool)
    defined = filled[off_diagonal & ~undefined]
    if defined.size == 0:
        raise TreeConstructionError("No pairwise distance is defined")

    filled[undefined] = defined.max()
    np.fill_diagonal(filled, 0.0)
    return filled, n_pairs


def try_build_guide_tree(names: Sequence[str], matrix: np.ndarray) -> TreeOutcome:
    """
    Build a neighbour-joining tree, returning the failure instead of raising.

    Parameters
    ----------
    names : Sequence[str]
        Tip labels, in matrix order
    matrix : np.ndarray
        Symmetric distance matrix

    Returns
    -------
    TreeOutcome
        The tree with negative branch lengths corrected, or tree=None and
        the error message if no distance is defined or construction fails.
        Undefined distances are filled by impute_undefined_distances.
    """
    try:
        if len(names) < 2:
            raise TreeConstructionError("At least two sequences are needed for a tree")
        matrix, n_filled = impute_undefined_distances(matrix)
        if n_filled:
            logger.warning(
                f"{n_filled} undefined pairwise distances set to the largest "
                "defined distance for the guide tree"
            )

        dm = DistanceMatrix(list(names), lower_triangle(matrix))
        tree = DistanceTreeConstructor().nj(dm)
    except Exception as e:
        logger.warning(f"Could not build guide tree: {e}")
        return TreeOutcome(tree=None, error=str(e))

    return TreeOutcome(tree=fix_negative_branch_lengths(tree))


def analyze(
    consensus_sequences: Dict[str, str],
    summaries: Sequence[ConsensusSummary],
    ref_aa_seq: Optional[str] = None,
    genetic_code: int = 1,
    processors: int = 1,
    distance_model: str = "K80",
    build_tree: bool = True,
) -> ComparativeAnalysis:
    """
    Align consensus sequences and build a guide tree.

    Parameters
    ----------
    consensus_sequences : Dict[str, str]
        Consensus sequences keyed by consensus name
    summaries : Sequence[ConsensusSummary]
        Summary rows, used to label tree tips by row number
    ref_aa_seq : str, optional
        If given, align by translation
    genetic_code : int, optional
        NCBI translation table id (default: 1)
    processors : int, optional
        MAFFT threads (default: 1)
    distance_model : str, optional
        "raw" or "K80" (default: "K80")
    build_tree : bool, optional
        Build the guide tree (default: True)

    Returns
    -------
    ComparativeAnalysis
        (alignment, tree). Both None for fewer than two sequences; tree None
        if it could not be built.
    """
    if len(consensus_sequences) < 2:
        logger.info("Fewer than 2 consensus sequences; skipping alignment and tree")
        return ComparativeAnalysis(alignment=None, tree=None)

    logger.info("Aligning consensus sequences...")
    if ref_aa_seq:
        aln = aligner.align_translated(consensus_sequences, genetic_code=genetic_code, threads=processors)
    else:
        aln = aligner.align_unconstrained(consensus_sequences, threads=processors)

    if not build_tree:
        return ComparativeAnalysis(alignment=aln, tree=None)

    logger.info("Building tree of consensus sequences...")
    names, matrix = pairwise_distance_matrix(relabel_alignment(aln, summaries), model=distance_model)
    outcome = try_build_guide_tree(names, matrix)

    return ComparativeAnalysis(alignment=aln, tree=outcome.tree)
