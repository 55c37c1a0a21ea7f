"""
Figures for Inspecting a Run

Figure Types:
1. Guide Tree
   - Neighbour-joining tree of the consensus sequences
   - Tips are row numbers of the consensus summary table
   - Height scales with the number of tips

2. Read Quality per Consensus
   - Box plot of trimmed mean quality of the reads in each consensus
   - Consensus sequences ordered as in the summary table

Output formats: PNG (300 DPI) or PDF, chosen by the file extension.

Example Usage:
    >>> from sangerconsensus.visualization import plot_consensus_tree
    >>> plot_consensus_tree(bundle.tree, "results/guide_tree.png")
"""

from typing import Optional, Sequence, Tuple, Union
from pathlib import Path
import logging

import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from Bio import Phylo

from .models import ReadRecord

logger = logging.getLogger(__name__)


def _save_figure(out: Path, dpi: int) -> None:
    plt.tight_layout()
    if out.suffix.lower() == ".png":
        plt.savefig(out, dpi=dpi, bbox_inches="tight")
    else:
        plt.savefig(out, bbox_inches="tight")
    plt.close()


def plot_consensus_tree(
    tree,
    output_path: Union[str, Path],
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 300,
) -> None:
    """
    Draw the guide tree of the consensus sequences.

    Parameters
    ----------
    tree : Bio.Phylo.BaseTree.Tree
        Guide tree from the pipeline
    output_path : str or Path
        Path for output figure
    figsize : Tuple[float, float], optional
        Figure size in inches. If None, automatically scales based on number
        of tips: height = max(10, n_tips * 0.3), capped at 50.
    dpi : int, optional
        Resolution for PNG output (default: 300)
    """
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    if figsize is None:
        n_tips = tree.count_terminals()
        height = max(10, min(50, n_tips * 0.3))
        width = 8 if n_tips <= 30 else min(14, 8 + (n_tips - 30) * 0.1)
        figsize = (width, height)
        logger.debug(f"Auto-scaled tree figure size to {figsize} for {n_tips} tips")

    fig = plt.figure(figsize=figsize)
    ax = fig.add_subplot(1, 1, 1)
    Phylo.draw(tree, do_show=False, axes=ax)
    ax.set_title("Consensus guide tree (display only)", fontsize=12)

    _save_figure(out, dpi)
    logger.info(f"Saved guide tree plot: {out}")


def plot_read_quality(
    read_records: Sequence[ReadRecord],
    output_path: Union[str, Path],
    figsize: Tuple[int, int] = (12, 6),
    dpi: int = 300,
) -> None:
    """
    Box plot of trimmed mean read quality per consensus sequence.

    Only reads that contributed to a consensus sequence are plotted.
    """
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    df = pd.DataFrame([
        {'consensus_name': r.consensus_name, 'trimmed_mean_quality': r.trimmed_mean_quality}
        for r in read_records
        if r.included_in_consensus and r.trimmed_mean_quality is not None
    ])

    if df.empty:
        logger.warning("No reads in consensus sequences; skipping read quality plot.")
        return

    order = list(dict.fromkeys(df['consensus_name']))

    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(data=df, x='consensus_name', y='trimmed_mean_quality', order=order,
                color='#5AB4AC', ax=ax)
    sns.stripplot(data=df, x='consensus_name', y='trimmed_mean_quality', order=order,
                  color='black', size=3, ax=ax)

    ax.set_xlabel('Consensus sequence', fontsize=12)
    ax.set_ylabel('Trimmed mean quality (Phred)', fontsize=12)
    ax.set_title('Read Quality per Consensus Sequence', fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', rotation=90)
    ax.grid(True, axis='y', linestyle='--', alpha=0.3)

    _save_figure(out, dpi)
    logger.info(f"Saved read quality plot: {out}")
