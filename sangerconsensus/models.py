"""
Data Model for Reads, Consensus Sequences and Pipeline Results

All records are frozen dataclasses. Reads are created by the readset loader
and re-stamped exactly once by the pipeline (with dataclasses.replace) when it
records which consensus sequence each read contributed to. Nothing is mutated
after creation, so records can be handed to worker processes and collected
back without any locking.

Record Types:
- ReadRecord: one raw read with its quality/trace statistics
- ConsensusResult: output of building one readset's consensus
- ConsensusSummary: one row per successfully built consensus sequence
- ResultBundle: everything a pipeline run produces
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from Bio.SeqRecord import SeqRecord

# Read-level metrics rolled up into min/max/median columns per consensus
READ_METRICS = (
    "raw_secondary_peaks",
    "trimmed_secondary_peaks",
    "raw_mean_quality",
    "trimmed_mean_quality",
)

STAT_SUFFIXES = ("min", "max", "med")


@dataclass(frozen=True)
class ReadRecord:
    """
    A single Sanger read and the statistics gathered while loading it.

    Attributes
    ----------
    file_path : str
        Full path to the trace file. Also the read's id in alignments.
    folder_name : str
        Name of the folder containing the file
    file_name : str
        Base name of the trace file
    readset_name : str
        Group key: file name with the forward/reverse suffix removed
    direction : str
        "forward" or "reverse"
    included_in_readset : bool
        False if the read failed the length or secondary peak filters
    included_in_consensus : bool
        True once the read is found in a consensus alignment
    consensus_name : str, optional
        Name of the consensus sequence the read contributed to
    sequence : str, optional
        Trimmed sequence, reverse complemented for reverse reads.
        None when the read was excluded from its readset.
    """
    file_path: str
    folder_name: str
    file_name: str
    readset_name: str
    direction: str
    included_in_readset: bool
    raw_length: int = 0
    trimmed_length: int = 0
    trim_start: int = 0
    trim_finish: int = 0
    raw_secondary_peaks: Optional[int] = None
    trimmed_secondary_peaks: Optional[int] = None
    raw_mean_quality: Optional[float] = None
    trimmed_mean_quality: Optional[float] = None
    included_in_consensus: bool = False
    consensus_name: Optional[str] = None
    sequence: Optional[str] = field(default=None, repr=False)

    def as_row(self) -> Dict[str, Any]:
        """Tabular representation without the sequence."""
        row = asdict(self)
        row.pop("sequence")
        return row


@dataclass(frozen=True)
class ConsensusResult:
    """
    Result of building the consensus sequence for one readset.

    ``consensus`` is None when the readset was rejected, e.g. when too few
    reads were left after removing reads with stop codons. The alignment ids
    are the file paths of the reads that were aligned.
    """
    readset_name: str
    consensus: Optional[str]
    alignment: Tuple[SeqRecord, ...] = field(default=(), repr=False)
    n_reads: int = 0
    n_reads_used: int = 0
    reads_rejected: Tuple[str, ...] = ()
    consensus_length: int = 0
    n_ambiguities: int = 0
    mean_read_distance: Optional[float] = None
    n_stop_codons: Optional[int] = None
    reading_frame: int = 1

    @property
    def aligned_read_paths(self) -> List[str]:
        return [record.id for record in self.alignment]

    def metrics(self) -> Dict[str, Any]:
        """Per-consensus metrics merged into the consensus summary table."""
        return {
            "n_reads": self.n_reads,
            "n_reads_used": self.n_reads_used,
            "n_reads_rejected": len(self.reads_rejected),
            "consensus_length": self.consensus_length,
            "n_ambiguities": self.n_ambiguities,
            "mean_read_distance": self.mean_read_distance,
            "n_stop_codons": self.n_stop_codons,
            "reading_frame": self.reading_frame,
        }


@dataclass(frozen=True)
class ConsensusSummary:
    """
    One row per consensus sequence: its own metrics plus min/max/median of
    every read-level metric over the reads that built it.
    """
    consensus_name: str
    metrics: Dict[str, Any]
    read_statistics: Dict[str, float]

    def as_row(self) -> Dict[str, Any]:
        row = {"consensus_name": self.consensus_name}
        row.update(self.metrics)
        row.update(self.read_statistics)
        return row


@dataclass(frozen=True)
class ResultBundle:
    """
    Everything produced by a pipeline run.

    Notes
    -----
    ``tree`` is a rough neighbour-joining tree in which negative branch
    lengths have been replaced by their absolute values. It is meant for
    spotting problem sequences by eye and must not be used for phylogenetic
    inference.
    """
    read_records: Tuple[ReadRecord, ...]
    consensus_results: Tuple[ConsensusResult, ...]
    consensus_summaries: Tuple[ConsensusSummary, ...]
    consensus_sequences: Dict[str, str]
    alignment: Optional[Any] = None
    tree: Optional[Any] = None

    def read_summary_frame(self) -> pd.DataFrame:
        return pd.DataFrame([record.as_row() for record in self.read_records])

    def consensus_summary_frame(self) -> pd.DataFrame:
        return pd.DataFrame([summary.as_row() for summary in self.consensus_summaries])
