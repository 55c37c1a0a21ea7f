"""
Core Pipeline Orchestration for sangerconsensus

This module runs the complete workflow from a folder of Sanger trace files to
a set of consensus sequences with summaries, an alignment and a guide tree.

Pipeline Phases:
1. Load reads, trim them and group them into readsets
2. Drop readsets with fewer than min_reads reads
3. Split the worker budget between readsets and within readsets
4. Build one consensus sequence per readset
5. Record which reads ended up in which consensus sequence
6. Summarise read statistics per consensus sequence
7. Align consensus sequences and build a guide tree

Failure Handling:
- Loading errors and "no readset has enough reads" stop the run.
- A readset whose build raises ConsensusBuildError or AlignmentError is
  logged and left out; the other readsets are unaffected.
- A guide tree that cannot be built is reported as absent.

Example Usage:
    >>> from sangerconsensus.core import make_consensus_seqs
    >>> bundle = make_consensus_seqs(
    ...     "traces/",
    ...     forward_suffix="_F.ab1",
    ...     reverse_suffix="_R.ab1",
    ...     processors=4,
    ... )
    >>> bundle.consensus_summary_frame().head()
"""

from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Union
import logging
import multiprocessing as mp
import time

from . import phylogenetics, summaries, utils
from .config import PipelineConfig, resolve_processors
from .consensus import build_consensus
from .errors import NoValidReadsetsError, RECOVERABLE_BUILD_ERRORS
from .models import ConsensusResult, ReadRecord, ResultBundle
from .readsets import load_readsets
from .scheduling import choose_workers, median_readset_size

# Configure logging
logger = logging.getLogger(__name__)


class BuildOutcome(NamedTuple):
    """Result of one readset build: a ConsensusResult or the error message."""
    readset_name: str
    result: Optional[ConsensusResult]
    error: Optional[str] = None


def _build_worker(item, builder: Callable, **build_kwargs) -> BuildOutcome:
    """
    Build one readset, turning recoverable failures into a BuildOutcome.

    Defined at module level so it can be pickled by multiprocessing.
    """
    readset_name, reads = item
    try:
        result = builder(reads, **build_kwargs)
    except RECOVERABLE_BUILD_ERRORS as e:
        return BuildOutcome(readset_name=readset_name, result=None, error=str(e))
    return BuildOutcome(readset_name=readset_name, result=result)


def filter_readsets(readsets: Dict[str, List[ReadRecord]], min_reads: int) -> Dict[str, List[ReadRecord]]:
    """Keep readsets with at least min_reads reads, in their original order."""
    return {name: reads for name, reads in readsets.items() if len(reads) >= min_reads}


def stamp_reads(
    read_records: Sequence[ReadRecord],
    results: Sequence[ConsensusResult],
) -> List[ReadRecord]:
    """
    Mark every read with the consensus sequence it contributed to.

    A read is included in a consensus if its file path is one of the aligned
    read ids of a result with a non-null consensus. Records are copied, not
    modified; reads that contributed to nothing get
    included_in_consensus=False and consensus_name=None.
    """
    consensus_by_path = {}
    for result in results:
        if result.consensus is None:
            continue
        for path in result.aligned_read_paths:
            consensus_by_path[path] = result.readset_name

    stamped = []
    for read in read_records:
        name = consensus_by_path.get(read.file_path)
        stamped.append(replace(
            read,
            included_in_consensus=name is not None,
            consensus_name=name,
        ))
    return stamped


def make_consensus_seqs(
    input_folder: Union[str, Path],
    forward_suffix: str,
    reverse_suffix: str,
    min_reads: int = 2,
    trim: bool = True,
    trim_cutoff: float = 0.0001,
    min_length: int = 20,
    max_secondary_peaks: Optional[int] = None,
    secondary_peak_ratio: float = 0.33,
    ref_aa_seq: Optional[str] = None,
    min_information: float = 0.5,
    threshold: float = 0.5,
    genetic_code: int = 1,
    accept_stop_codons: bool = True,
    reading_frame: int = 1,
    processors: Optional[int] = None,
    distance_model: str = "K80",
    build_tree: bool = True,
    loader: Callable = load_readsets,
    builder: Callable = build_consensus,
) -> ResultBundle:
    """
    Build consensus sequences for every readset in a folder of trace files.

    Parameters
    ----------
    input_folder : str or Path
        Parent folder of the trace files (searched recursively)
    forward_suffix, reverse_suffix : str
        File name suffixes identifying forward and reverse reads
    min_reads : int, optional
        Minimum reads per readset; must be at least 2 (default: 2)
    trim, trim_cutoff, min_length, max_secondary_peaks, secondary_peak_ratio
        Read trimming and filtering parameters, passed to the loader
    ref_aa_seq : str, optional
        Reference amino acid sequence for translation-aware alignment
    min_information, threshold : float, optional
        Consensus calling parameters (default: 0.5 each)
    genetic_code : int, optional
        NCBI translation table id (default: 1)
    accept_stop_codons : bool, optional
        Keep reads with stop codons (default: True)
    reading_frame : int, optional
        Frame for stop codon detection (default: 1)
    processors : int, optional
        Worker budget for the whole run (default: None, all CPUs)
    distance_model : str, optional
        Distance model for the guide tree (default: "K80")
    build_tree : bool, optional
        Build the guide tree (default: True)
    loader : Callable, optional
        Readset loader (default: readsets.load_readsets)
    builder : Callable, optional
        Consensus builder (default: consensus.build_consensus)

    Returns
    -------
    ResultBundle
        Read records, consensus results, summaries, consensus sequences,
        alignment and guide tree

    Raises
    ------
    ValueError
        If min_reads < 2 or processors < 1
    ReadsetLoadError
        If the reads cannot be loaded
    NoValidReadsetsError
        If no readset has at least min_reads reads
    """
    start_time = time.time()

    if min_reads < 2:
        raise ValueError(f"min_reads must be >= 2, got {min_reads}")
    n_processors = resolve_processors(processors)

    logger.info("=" * 70)
    logger.info("Sanger consensus pipeline")
    logger.info("=" * 70)
    logger.info(f"Input: {input_folder}")
    logger.info(f"Suffixes: forward '{forward_suffix}', reverse '{reverse_suffix}'")
    logger.info(f"Processors: {n_processors}")
    logger.info("")

    # =========================================================================
    # Phase 1: Load and filter readsets
    # =========================================================================

    logger.info("PHASE 1: Loading readsets")
    logger.info("-" * 70)

    loaded = loader(
        input_folder,
        forward_suffix,
        reverse_suffix,
        trim=trim,
        trim_cutoff=trim_cutoff,
        min_length=min_length,
        max_secondary_peaks=max_secondary_peaks,
        secondary_peak_ratio=secondary_peak_ratio,
        workers=n_processors,
    )
    read_records = list(loaded.read_records)

    valid_readsets = filter_readsets(loaded.readsets, min_reads)
    logger.info(f"  {len(loaded.readsets)} readsets loaded")
    logger.info(f"  {len(valid_readsets)} readsets with at least {min_reads} reads")

    if not valid_readsets:
        raise NoValidReadsetsError(
            f"No readsets with at least {min_reads} reads; check the file suffixes "
            "and read filters"
        )

    # =========================================================================
    # Phase 2: Build consensus sequences
    # =========================================================================

    logger.info("")
    logger.info("PHASE 2: Building consensus sequences")
    logger.info("-" * 70)

    split = choose_workers(
        n_processors,
        n_readsets=len(valid_readsets),
        median_size=median_readset_size(valid_readsets),
    )
    logger.info(f"  Workers: {split.outer} across readsets, {split.inner} per readset")

    worker_func = partial(
        _build_worker,
        builder=builder,
        ref_aa_seq=ref_aa_seq,
        min_information=min_information,
        threshold=threshold,
        workers=split.inner,
        genetic_code=genetic_code,
        accept_stop_codons=accept_stop_codons,
        reading_frame=reading_frame,
    )

    items = list(valid_readsets.items())
    if split.outer > 1:
        with mp.Pool(processes=min(split.outer, len(items))) as pool:
            outcomes = pool.map(worker_func, items)
    else:
        outcomes = list(map(worker_func, items))

    results = []
    for outcome in outcomes:
        if outcome.error is not None:
            logger.warning(f"  Readset {outcome.readset_name} failed: {outcome.error}")
        else:
            results.append(outcome.result)

    consensus_sequences = {
        result.readset_name: result.consensus
        for result in results
        if result.consensus is not None
    }
    n_failed = len(outcomes) - len(results)
    logger.info(
        f"  Built {len(consensus_sequences)} consensus sequences from "
        f"{len(items)} readsets ({n_failed} failed)"
    )

    # =========================================================================
    # Phase 3: Summaries
    # =========================================================================

    logger.info("")
    logger.info("PHASE 3: Summarising reads per consensus sequence")
    logger.info("-" * 70)

    read_records = stamp_reads(read_records, results)
    consensus_summaries = summaries.aggregate(results, read_records)
    logger.info(f"  {len(consensus_summaries)} consensus summaries")

    # =========================================================================
    # Phase 4: Alignment and guide tree
    # =========================================================================

    logger.info("")
    logger.info("PHASE 4: Aligning consensus sequences")
    logger.info("-" * 70)

    analysis = phylogenetics.analyze(
        consensus_sequences,
        consensus_summaries,
        ref_aa_seq=ref_aa_seq,
        genetic_code=genetic_code,
        processors=n_processors,
        distance_model=distance_model,
        build_tree=build_tree,
    )
    if build_tree and analysis.alignment is not None and analysis.tree is None:
        logger.warning("  Guide tree could not be built; continuing without it")

    bundle = ResultBundle(
        read_records=tuple(read_records),
        consensus_results=tuple(results),
        consensus_summaries=tuple(consensus_summaries),
        consensus_sequences=consensus_sequences,
        alignment=analysis.alignment,
        tree=analysis.tree,
    )

    logger.info("")
    logger.info("=" * 70)
    logger.info(f"Pipeline finished in {utils.format_elapsed_time(time.time() - start_time)}")
    logger.info(f"  Reads: {len(read_records)}")
    logger.info(f"  Consensus sequences: {len(consensus_sequences)}")
    logger.info("=" * 70)

    return bundle


def run_from_config(input_folder: Union[str, Path], config: PipelineConfig, **kwargs) -> ResultBundle:
    """Run make_consensus_seqs with parameters taken from a PipelineConfig."""
    return make_consensus_seqs(
        input_folder,
        forward_suffix=config.readsets.forward_suffix,
        reverse_suffix=config.readsets.reverse_suffix,
        min_reads=config.consensus.min_reads,
        trim=config.readsets.trim,
        trim_cutoff=config.readsets.trim_cutoff,
        min_length=config.readsets.min_length,
        max_secondary_peaks=config.readsets.max_secondary_peaks,
        secondary_peak_ratio=config.readsets.secondary_peak_ratio,
        ref_aa_seq=config.consensus.ref_aa_seq,
        min_information=config.consensus.min_information,
        threshold=config.consensus.threshold,
        genetic_code=config.consensus.genetic_code,
        accept_stop_codons=config.consensus.accept_stop_codons,
        reading_frame=config.consensus.reading_frame,
        processors=config.processors,
        distance_model=config.phylogenetic.distance_model,
        build_tree=config.phylogenetic.build_tree,
        **kwargs,
    )
