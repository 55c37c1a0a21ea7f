"""
Consensus Sequence Construction for a Single Readset

Given the reads of one readset (typically a forward and a reverse read of the
same sample), this module aligns the reads and calls a consensus sequence.

Workflow for one readset:
1. Resolve the reading frame (a reference amino acid sequence forces frame 1)
2. Optionally reject reads with stop codons in that frame
3. Align the remaining reads with MAFFT (by translation if a reference
   amino acid sequence is supplied)
4. Call a consensus base at each alignment column
5. Derive per-consensus metrics

Consensus Calling:
- min_information: a column only contributes to the consensus if at least
  this fraction of reads has a base there. With two reads and the default of
  0.5, regions covered by a single read are kept.
- threshold: bases are added to the call in order of frequency until less
  than this fraction of the column's information is ignored. Several bases
  are reported as an IUPAC ambiguity code, e.g. an A/G split gives R.

Readsets that cannot produce a consensus for biological reasons (fewer than
two reads left after stop codon filtering, or no column with enough
information) return a ConsensusResult whose consensus is None. Exceptions
are reserved for inputs the builder cannot work with.

Example Usage:
    >>> from sangerconsensus.consensus import build_consensus
    >>> result = build_consensus(reads, workers=2)
    >>> print(result.consensus_length, result.n_ambiguities)
"""

from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple
from collections import Counter
import logging
import math

from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from . import alignment as aligner
from .distances import mean_pairwise_distance
from .errors import ConsensusBuildError
from .models import ConsensusResult, ReadRecord

# Configure logging
logger = logging.getLogger(__name__)

IUPAC_CODES: Dict[FrozenSet[str], str] = {
    frozenset("A"): "A",
    frozenset("C"): "C",
    frozenset("G"): "G",
    frozenset("T"): "T",
    frozenset("AG"): "R",
    frozenset("CT"): "Y",
    frozenset("CG"): "S",
    frozenset("AT"): "W",
    frozenset("GT"): "K",
    frozenset("AC"): "M",
    frozenset("CGT"): "B",
    frozenset("AGT"): "D",
    frozenset("ACT"): "H",
    frozenset("ACG"): "V",
    frozenset("ACGT"): "N",
}

BASES = "ACGT"


def call_consensus_base(
    column: Sequence[str],
    min_information: float = 0.5,
    threshold: float = 0.5,
) -> Optional[str]:
    """
    Call the consensus character for one alignment column.

    Parameters
    ----------
    column : Sequence[str]
        One character per aligned read
    min_information : float, optional
        Minimum fraction of reads with a base (default: 0.5)
    threshold : float, optional
        Fraction of information that must not be reached by the ignored
        bases (default: 0.5)

    Returns
    -------
    str or None
        A base or IUPAC code, or None if the column carries too little
        information and is left out of the consensus

    Examples
    --------
    >>> call_consensus_base("AAC")
    'A'
    >>> call_consensus_base("AG")
    'R'
    >>> call_consensus_base("A--") is None
    True
    """
    if not column:
        return None

    bases = [base for base in column if base in BASES]
    if not bases or len(bases) / len(column) < min_information:
        return None

    total = len(bases)
    counts = sorted(Counter(bases).items(), key=lambda item: (-item[1], item[0]))

    chosen = []
    covered = 0
    for base, count in counts:
        chosen.append(base)
        covered += count
        if (total - covered) / total < threshold:
            break

    return IUPAC_CODES[frozenset(chosen)]


def call_consensus(
    aligned_sequences: Sequence[str],
    min_information: float = 0.5,
    threshold: float = 0.5,
) -> str:
    """
    Call a consensus sequence from aligned reads.

    Returns
    -------
    str
        Ungapped consensus sequence (possibly empty)

    Raises
    ------
    ConsensusBuildError
        If the sequences are not all the same length
    """
    if not aligned_sequences:
        return ""

    length = len(aligned_sequences[0])
    if any(len(seq) != length for seq in aligned_sequences):
        raise ConsensusBuildError("Aligned reads must all have the same length")

    upper = [seq.upper() for seq in aligned_sequences]
    consensus = []
    for position in range(length):
        call = call_consensus_base(
            [seq[position] for seq in upper],
            min_information=min_information,
            threshold=threshold,
        )
        if call is not None:
            consensus.append(call)

    return "".join(consensus)


def count_stop_codons(sequence: str, reading_frame: int = 1, genetic_code: int = 1) -> int:
    """
    Count stop codons in a sequence translated in the given frame.

    Gaps are removed before translation and a trailing partial codon is
    ignored.

    Examples
    --------
    >>> count_stop_codons("ATGTAAATGTAG")
    2
    >>> count_stop_codons("CATGTAA", reading_frame=2)
    1
    """
    if reading_frame not in (1, 2, 3):
        raise ValueError("reading_frame must be 1, 2 or 3")

    coding = sequence.replace('-', '').upper()[reading_frame - 1:]
    coding = coding[:len(coding) - len(coding) % 3]
    if not coding:
        return 0
    return str(Seq(coding).translate(table=genetic_code)).count('*')


def _split_by_stop_codons(
    reads: Sequence[ReadRecord],
    reading_frame: int,
    genetic_code: int,
) -> Tuple[List[ReadRecord], List[str]]:
    kept, rejected = [], []
    for read in reads:
        n_stops = count_stop_codons(read.sequence, reading_frame, genetic_code)
        if n_stops > 0:
            logger.debug(f"  Rejecting {read.file_name}: {n_stops} stop codons in frame {reading_frame}")
            rejected.append(read.file_path)
        else:
            kept.append(read)
    return kept, rejected


def build_consensus(
    reads: Sequence[ReadRecord],
    ref_aa_seq: Optional[str] = None,
    min_information: float = 0.5,
    threshold: float = 0.5,
    workers: int = 1,
    genetic_code: int = 1,
    accept_stop_codons: bool = True,
    reading_frame: int = 1,
) -> ConsensusResult:
    """
    Build the consensus sequence of one readset.

    Parameters
    ----------
    reads : Sequence[ReadRecord]
        Reads of a single readset, with sequences
    ref_aa_seq : str, optional
        Reference amino acid sequence. Switches to translation-aware
        alignment and forces reading frame 1.
    min_information : float, optional
        Minimum fraction of reads with a base to call a position (default: 0.5)
    threshold : float, optional
        Maximum fraction of information lost per position (default: 0.5)
    workers : int, optional
        MAFFT threads for this readset (default: 1)
    genetic_code : int, optional
        NCBI translation table id (default: 1)
    accept_stop_codons : bool, optional
        Keep reads with stop codons (default: True)
    reading_frame : int, optional
        Frame for stop codon detection when no reference is given (default: 1)

    Returns
    -------
    ConsensusResult
        Result with ``consensus=None`` if the readset was rejected

    Raises
    ------
    ConsensusBuildError
        If reads is empty, mixes readsets, or contains reads without a sequence
    AlignmentError
        If MAFFT fails
    """
    if not reads:
        raise ConsensusBuildError("Cannot build a consensus from an empty readset")

    readset_name = reads[0].readset_name
    if any(read.readset_name != readset_name for read in reads):
        raise ConsensusBuildError(f"Reads from several readsets passed to readset {readset_name}")

    missing = [read.file_path for read in reads if not read.sequence]
    if missing:
        raise ConsensusBuildError(
            f"Readset {readset_name} contains {len(missing)} reads without a sequence"
        )

    frame = 1 if ref_aa_seq else reading_frame

    rejected: List[str] = []
    usable = list(reads)
    if not accept_stop_codons:
        usable, rejected = _split_by_stop_codons(reads, frame, genetic_code)

    if len(usable) < 2:
        logger.info(
            f"  Readset {readset_name}: {len(usable)} usable reads after stop codon "
            "filtering, no consensus built"
        )
        return ConsensusResult(
            readset_name=readset_name,
            consensus=None,
            n_reads=len(reads),
            n_reads_used=len(usable),
            reads_rejected=tuple(rejected),
            reading_frame=frame,
        )

    records = [
        SeqRecord(Seq(read.sequence), id=read.file_path, description="")
        for read in usable
    ]

    if ref_aa_seq:
        aligned = aligner.align_translated(records, genetic_code=genetic_code, threads=workers)
    else:
        aligned = aligner.align_unconstrained(records, threads=workers)

    aligned_records = tuple(aligned)
    aligned_seqs = [str(record.seq) for record in aligned_records]

    consensus = call_consensus(aligned_seqs, min_information=min_information, threshold=threshold)
    if not consensus:
        logger.info(f"  Readset {readset_name}: no position passed min_information, no consensus built")
        return ConsensusResult(
            readset_name=readset_name,
            consensus=None,
            alignment=aligned_records,
            n_reads=len(reads),
            n_reads_used=len(usable),
            reads_rejected=tuple(rejected),
            reading_frame=frame,
        )

    distance = mean_pairwise_distance(aligned_seqs, model="raw")

    result = ConsensusResult(
        readset_name=readset_name,
        consensus=consensus,
        alignment=aligned_records,
        n_reads=len(reads),
        n_reads_used=len(usable),
        reads_rejected=tuple(rejected),
        consensus_length=len(consensus),
        n_ambiguities=sum(1 for base in consensus if base not in BASES),
        mean_read_distance=None if math.isnan(distance) else distance,
        n_stop_codons=None if accept_stop_codons else count_stop_codons(consensus, frame, genetic_code),
        reading_frame=frame,
    )

    logger.debug(
        f"  Readset {readset_name}: consensus {result.consensus_length} bp from "
        f"{result.n_reads_used}/{result.n_reads} reads, {result.n_ambiguities} ambiguities"
    )
    return result
