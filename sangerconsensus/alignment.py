"""
Multiple Sequence Alignment with MAFFT

Two aligners are provided, both wrapping MAFFT:

- align_unconstrained: plain nucleotide alignment (mafft --auto)
- align_translated: codon-aware alignment. Sequences are translated in
  frame 1, the proteins are aligned, and the codons are threaded back onto
  the protein alignment so that gaps only ever fall between codons.

Sequence ids are replaced by short placeholders while MAFFT runs (MAFFT
truncates and rewrites names containing whitespace or path separators) and
restored afterwards, so callers can use file paths as ids.

Dependencies:
- MAFFT v7+ on PATH
- Biopython for sequence handling and translation
"""

from typing import Dict, List, Optional, Sequence, Union
from pathlib import Path
import logging
import subprocess
import shutil
import tempfile

from Bio import SeqIO
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .errors import AlignmentError

# Configure logging
logger = logging.getLogger(__name__)

SequenceInput = Union[Dict[str, str], Sequence[SeqRecord]]


def check_mafft() -> None:
    """Raise AlignmentError if MAFFT is not on PATH."""
    if shutil.which('mafft') is None:
        raise AlignmentError(
            "MAFFT not found in PATH. Please install MAFFT:\n"
            "  - macOS: brew install mafft\n"
            "  - Ubuntu/Debian: sudo apt-get install mafft\n"
            "  - conda: conda install -c bioconda mafft"
        )


def _as_records(sequences: SequenceInput) -> List[SeqRecord]:
    if isinstance(sequences, dict):
        return [
            SeqRecord(Seq(str(seq)), id=name, description="")
            for name, seq in sequences.items()
        ]
    return list(sequences)


def run_mafft(
    records: Sequence[SeqRecord],
    threads: int = 1,
    mafft_options: Optional[List[str]] = None,
) -> List[SeqRecord]:
    """
    Align sequence records with MAFFT.

    Parameters
    ----------
    records : Sequence[SeqRecord]
        Unaligned records. Ids must be unique.
    threads : int, optional
        Number of MAFFT threads (default: 1)
    mafft_options : List[str], optional
        MAFFT command line options (default: ["--auto"])

    Returns
    -------
    List[SeqRecord]
        Aligned records, uppercased, in input order with the original ids

    Raises
    ------
    AlignmentError
        If MAFFT is missing, fails, or returns an unexpected set of sequences
    """
    check_mafft()

    if mafft_options is None:
        mafft_options = ["--auto"]

    ids = [record.id for record in records]
    if len(set(ids)) != len(ids):
        raise AlignmentError("Sequence ids must be unique for alignment")

    placeholders = {f"s{i}": record.id for i, record in enumerate(records)}

    with tempfile.TemporaryDirectory(prefix="sangerconsensus_") as tmpdir:
        input_fasta = Path(tmpdir) / "input.fasta"
        output_fasta = Path(tmpdir) / "aligned.fasta"

        SeqIO.write(
            [
                SeqRecord(record.seq, id=placeholder, description="")
                for placeholder, record in zip(placeholders, records)
            ],
            str(input_fasta),
            "fasta",
        )

        cmd = ["mafft"] + mafft_options + ["--thread", str(threads), str(input_fasta)]
        logger.debug(f"Running MAFFT alignment: {' '.join(cmd)}")

        try:
            with open(output_fasta, 'w') as out_handle:
                subprocess.run(
                    cmd,
                    stdout=out_handle,
                    stderr=subprocess.PIPE,
                    text=True,
                    check=True
                )
        except subprocess.CalledProcessError as e:
            error_msg = f"MAFFT alignment failed:\n{e.stderr}"
            logger.error(error_msg)
            raise AlignmentError(error_msg) from e
        except OSError as e:
            error_msg = f"Failed to run MAFFT: {e}"
            logger.error(error_msg)
            raise AlignmentError(error_msg) from e

        aligned = {
            record.id: str(record.seq).upper()
            for record in SeqIO.parse(str(output_fasta), "fasta")
        }

    if set(aligned) != set(placeholders):
        raise AlignmentError(
            f"MAFFT returned {len(aligned)} sequences for {len(placeholders)} inputs"
        )

    return [
        SeqRecord(Seq(aligned[placeholder]), id=original, description="")
        for placeholder, original in placeholders.items()
    ]


def align_unconstrained(
    sequences: SequenceInput,
    threads: int = 1,
) -> MultipleSeqAlignment:
    """
    Align nucleotide sequences without reading frame constraints.

    Parameters
    ----------
    sequences : Dict[str, str] or Sequence[SeqRecord]
        Sequences keyed by name, or records with unique ids
    threads : int, optional
        Number of MAFFT threads (default: 1)

    Returns
    -------
    MultipleSeqAlignment
        Alignment in input order
    """
    records = _as_records(sequences)
    if len(records) < 2:
        return MultipleSeqAlignment(records)

    logger.info(f"Aligning {len(records)} sequences with MAFFT ({threads} threads)")
    aligned = run_mafft(records, threads=threads, mafft_options=["--auto"])
    return MultipleSeqAlignment(aligned)


def translate_in_frame(sequence: str, genetic_code: int = 1) -> str:
    """
    Translate a nucleotide sequence in frame 1, ignoring a trailing partial codon.

    Examples
    --------
    >>> translate_in_frame("ATGAAATGAC")
    'MK*'
    """
    usable = len(sequence) - len(sequence) % 3
    return str(Seq(sequence[:usable]).translate(table=genetic_code))


def thread_codons(nucleotides: str, aligned_protein: str) -> str:
    """
    Lay codons onto an aligned protein sequence.

    Each residue is replaced by its codon and each gap by '---'. A trailing
    partial codon is appended after the last codon.

    Examples
    --------
    >>> thread_codons("ATGAAAC", "M-K")
    'ATG---AAAC'
    """
    usable = len(nucleotides) - len(nucleotides) % 3
    pieces = []
    codon_index = 0
    for residue in aligned_protein:
        if residue == '-':
            pieces.append('---')
        else:
            pieces.append(nucleotides[codon_index * 3:codon_index * 3 + 3])
            codon_index += 1

    if codon_index * 3 != usable:
        raise AlignmentError(
            f"Protein alignment has {codon_index} residues for {usable // 3} codons"
        )

    pieces.append(nucleotides[usable:])
    return "".join(pieces)


def align_translated(
    sequences: SequenceInput,
    genetic_code: int = 1,
    threads: int = 1,
) -> MultipleSeqAlignment:
    """
    Align protein-coding sequences by their translation.

    Sequences are assumed to be in frame 1. Proteins are aligned with MAFFT
    and the codons are threaded back, so the result is a nucleotide
    alignment whose gaps are multiples of three within the coding region.

    Parameters
    ----------
    sequences : Dict[str, str] or Sequence[SeqRecord]
        Sequences keyed by name, or records with unique ids
    genetic_code : int, optional
        NCBI translation table id (default: 1)
    threads : int, optional
        Number of MAFFT threads (default: 1)

    Returns
    -------
    MultipleSeqAlignment
        Nucleotide alignment in input order
    """
    records = _as_records(sequences)
    if len(records) < 2:
        return MultipleSeqAlignment(records)

    logger.info(
        f"Aligning {len(records)} sequences by translation "
        f"(genetic code {genetic_code}, {threads} threads)"
    )

    nucleotides = {record.id: str(record.seq).upper() for record in records}
    proteins = []
    for record in records:
        # Stop codons are aligned as unknown residues
        protein = translate_in_frame(nucleotides[record.id], genetic_code).replace('*', 'X')
        if not protein:
            raise AlignmentError(f"Sequence {record.id} is shorter than one codon")
        proteins.append(SeqRecord(Seq(protein), id=record.id, description=""))

    aligned_proteins = run_mafft(proteins, threads=threads, mafft_options=["--auto", "--amino"])

    threaded = {
        record.id: thread_codons(nucleotides[record.id], str(record.seq))
        for record in aligned_proteins
    }
    width = max(len(seq) for seq in threaded.values())

    return MultipleSeqAlignment([
        SeqRecord(Seq(threaded[record.id].ljust(width, '-')), id=record.id, description="")
        for record in records
    ])
