"""
sangerconsensus: Consensus Sequences from Groups of Sanger Reads

sangerconsensus is a Python package for turning folders of Sanger trace files
(.ab1) into consensus sequences. Reads are grouped into readsets by file name,
quality trimmed, aligned and merged, and the resulting consensus sequences are
summarised, aligned to each other and placed on a rough guide tree.

Core functionality includes:
- Read discovery, Mott quality trimming and secondary peak counting
- Consensus calling with IUPAC ambiguity codes
- Optional translation-aware alignment against a reference protein
- Per-consensus summaries of read quality
- Consensus alignment and neighbour-joining guide tree
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import core
from . import consensus
from . import readsets
from . import summaries
from . import phylogenetics
from . import reports
from . import utils

from .core import make_consensus_seqs

__all__ = [
    "core",
    "consensus",
    "readsets",
    "summaries",
    "phylogenetics",
    "reports",
    "utils",
    "make_consensus_seqs",
]
