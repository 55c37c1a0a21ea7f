"""
Result file output for pipeline runs.

Writes the tables and sequence files of a ResultBundle to an output folder:

- {prefix}_read_summaries.csv: one row per read file
- {prefix}_consensus_summaries.csv: one row per consensus sequence
- {prefix}_consensus_sequences.fasta: unaligned consensus sequences
- {prefix}_consensus_alignment.fasta: aligned consensus sequences
- {prefix}_guide_tree.nwk: neighbour-joining guide tree (display only)
- {prefix}_run_summary.json: counts of reads, readsets and failures
"""

import logging
import json
from pathlib import Path
from typing import Dict, Union

import pandas as pd
from Bio import AlignIO, Phylo, SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .models import ResultBundle

logger = logging.getLogger(__name__)


def write_read_summaries(bundle: ResultBundle, output_csv: Union[str, Path]) -> Path:
    out = Path(output_csv)
    out.parent.mkdir(parents=True, exist_ok=True)

    df = bundle.read_summary_frame()
    df.to_csv(out, index=False)
    logger.info(f"Read summaries saved: {out} ({len(df)} reads)")
    return out


def write_consensus_summaries(bundle: ResultBundle, output_csv: Union[str, Path]) -> Path:
    out = Path(output_csv)
    out.parent.mkdir(parents=True, exist_ok=True)

    df = bundle.consensus_summary_frame()
    if df.empty:
        df = pd.DataFrame(columns=['consensus_name'])
    df.to_csv(out, index=False)
    logger.info(f"Consensus summaries saved: {out} ({len(df)} consensus sequences)")
    return out


def write_consensus_fasta(bundle: ResultBundle, output_fasta: Union[str, Path]) -> Path:
    """Write consensus sequences in build order."""
    out = Path(output_fasta)
    out.parent.mkdir(parents=True, exist_ok=True)

    records = [
        SeqRecord(Seq(sequence), id=name, description=f"length={len(sequence)}")
        for name, sequence in bundle.consensus_sequences.items()
    ]
    SeqIO.write(records, out, "fasta")
    logger.info(f"Consensus sequences saved: {out} ({len(records)} sequences)")
    return out


def summarise_run(bundle: ResultBundle) -> Dict[str, int]:
    """
    Headline counts for a run.

    Examples
    --------
    A run over 10 reads in 5 readsets where one readset was rejected for stop
    codons reports n_consensus_results=5 and n_consensus_sequences=4.
    """
    read_records = bundle.read_records
    return {
        'n_reads': len(read_records),
        'n_reads_in_readsets': sum(1 for r in read_records if r.included_in_readset),
        'n_reads_in_consensus': sum(1 for r in read_records if r.included_in_consensus),
        'n_consensus_results': len(bundle.consensus_results),
        'n_consensus_sequences': len(bundle.consensus_sequences),
        'n_rejected_readsets': sum(1 for r in bundle.consensus_results if r.consensus is None),
        'alignment_length': bundle.alignment.get_alignment_length() if bundle.alignment is not None else 0,
        'tree_built': bundle.tree is not None,
    }


def write_results(
    bundle: ResultBundle,
    output_dir: Union[str, Path],
    prefix: str = "sanger",
) -> Dict[str, Path]:
    """
    Write every output of a run.

    Parameters
    ----------
    bundle : ResultBundle
        Pipeline result
    output_dir : str or Path
        Folder for the output files (created if missing)
    prefix : str, optional
        File name prefix (default: "sanger")

    Returns
    -------
    Dict[str, Path]
        Written file paths keyed by output type. Alignment and tree are only
        present when the run produced them.
    """
    base = Path(output_dir)
    base.mkdir(parents=True, exist_ok=True)

    files = {
        'read_summaries': write_read_summaries(bundle, base / f"{prefix}_read_summaries.csv"),
        'consensus_summaries': write_consensus_summaries(
            bundle, base / f"{prefix}_consensus_summaries.csv"
        ),
        'consensus_sequences': write_consensus_fasta(
            bundle, base / f"{prefix}_consensus_sequences.fasta"
        ),
    }

    if bundle.alignment is not None:
        aln_path = base / f"{prefix}_consensus_alignment.fasta"
        AlignIO.write(bundle.alignment, aln_path, "fasta")
        logger.info(f"Consensus alignment saved: {aln_path}")
        files['consensus_alignment'] = aln_path

    if bundle.tree is not None:
        tree_path = base / f"{prefix}_guide_tree.nwk"
        Phylo.write(bundle.tree, tree_path, "newick")
        logger.info(f"Guide tree saved: {tree_path}")
        files['guide_tree'] = tree_path

    summary_path = base / f"{prefix}_run_summary.json"
    with open(summary_path, 'w') as f:
        json.dump(summarise_run(bundle), f, indent=2)
    files['run_summary'] = summary_path

    return files
