"""
Read Discovery, Quality Trimming and Readset Grouping

This module finds Sanger trace files (.ab1) under an input folder, classifies
them as forward or reverse reads by file name suffix, trims them on quality,
counts secondary peaks, and groups the reads that pass the filters into
readsets: one readset per sample name.

Workflow:
1. Recursively scan the input folder for files ending in the forward or
   reverse suffix
2. Derive the readset name by removing the suffix from the file name
   (e.g. "sample12_F.ab1" and "sample12_R.ab1" both belong to "sample12")
3. Read each trace with Biopython's ABI parser
4. Trim with the modified Mott algorithm (optional)
5. Count secondary peaks in the raw and trimmed read
6. Reverse complement reverse reads
7. Exclude reads that are too short after trimming or have too many
   secondary peaks

Excluded reads stay in the read records (with included_in_readset=False)
so they appear in the read summary table, but they are not part of any
readset.

Example Usage:
    >>> from sangerconsensus.readsets import load_readsets
    >>> loaded = load_readsets("traces/", "_F.ab1", "_R.ab1", workers=4)
    >>> for name, reads in loaded.readsets.items():
    ...     print(name, len(reads))
"""

from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union
from pathlib import Path
from functools import partial
import logging
import multiprocessing as mp

import numpy as np
from Bio import SeqIO
from Bio.Seq import reverse_complement

from .errors import ReadsetLoadError
from .models import ReadRecord

# Configure logging
logger = logging.getLogger(__name__)

FORWARD = "forward"
REVERSE = "reverse"

# ABIF tags holding the analysed trace for channels G, A, T, C (order in FWO_1)
TRACE_CHANNEL_TAGS = ("DATA9", "DATA10", "DATA11", "DATA12")
PEAK_LOCATION_TAG = "PLOC2"


class ReadFile(NamedTuple):
    path: Path
    direction: str
    readset_name: str


class LoadedReadsets(NamedTuple):
    """Readsets keyed by name plus a record for every read file found."""
    readsets: Dict[str, List[ReadRecord]]
    read_records: List[ReadRecord]


def find_read_files(
    folder: Union[str, Path],
    forward_suffix: str,
    reverse_suffix: str,
) -> List[ReadFile]:
    """
    Find forward and reverse read files below a folder.

    Parameters
    ----------
    folder : str or Path
        Parent folder; subfolders are scanned recursively
    forward_suffix : str
        Full file name suffix of forward reads, e.g. "_F.ab1"
    reverse_suffix : str
        Full file name suffix of reverse reads, e.g. "_R.ab1"

    Returns
    -------
    List[ReadFile]
        Read files sorted by path

    Raises
    ------
    ReadsetLoadError
        If the folder does not exist or is not a directory
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise ReadsetLoadError(f"Input folder not found or not a directory: {folder}")

    # Longest suffix first, so "_R.ab1" wins over "R.ab1" style overlaps
    suffixes = sorted(
        [(forward_suffix, FORWARD), (reverse_suffix, REVERSE)],
        key=lambda item: len(item[0]),
        reverse=True,
    )

    read_files = []
    for path in sorted(folder.rglob("*")):
        if not path.is_file():
            continue
        for suffix, direction in suffixes:
            if path.name.endswith(suffix):
                readset_name = path.name[:-len(suffix)]
                if not readset_name:
                    logger.warning(f"Skipping {path}: file name is only the suffix")
                    break
                read_files.append(ReadFile(path, direction, readset_name))
                break

    logger.debug(f"Found {len(read_files)} read files in {folder}")
    return read_files


def trim_mott(qualities: Sequence[int], cutoff: float = 0.0001) -> Tuple[int, int]:
    """
    Quality trim a read with the modified Richard Mott algorithm.

    Each base scores ``cutoff - 10 ** (q / -10)``. The running sum of scores
    is clamped at zero. The retained region starts at the first base with a
    positive running sum and ends where the running sum peaks. Unlike
    Biopython's ABI trimming, the first base is not always removed.

    Parameters
    ----------
    qualities : Sequence[int]
        Phred quality scores
    cutoff : float, optional
        Error probability cutoff (default: 0.0001)

    Returns
    -------
    Tuple[int, int]
        (start, end) slice bounds of the retained region; (0, 0) if no base
        is retained

    Examples
    --------
    >>> trim_mott([10, 10, 60, 60, 60, 10], cutoff=0.01)
    (2, 5)
    """
    if len(qualities) == 0:
        return 0, 0

    scores = cutoff - np.power(10.0, np.asarray(qualities, dtype=float) / -10.0)

    cumulative = np.empty(len(scores))
    running = 0.0
    for i, score in enumerate(scores):
        running = max(0.0, running + score)
        cumulative[i] = running

    if cumulative.max() <= 0:
        return 0, 0

    start = int(np.flatnonzero(cumulative > 0)[0])
    finish = int(np.argmax(cumulative))

    return start, finish + 1


def extract_trace(record) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Pull peak locations and channel intensities from an ABI record.

    Returns
    -------
    Tuple[np.ndarray, np.ndarray] or None
        (peak_locations, channels) where channels has shape (4, n_scans),
        or None if the trace tags are missing
    """
    raw = record.annotations.get("abif_raw", {})
    if PEAK_LOCATION_TAG not in raw or not all(tag in raw for tag in TRACE_CHANNEL_TAGS):
        return None

    peak_locations = np.asarray(raw[PEAK_LOCATION_TAG], dtype=int)
    channel_length = min(len(raw[tag]) for tag in TRACE_CHANNEL_TAGS)
    channels = np.vstack([
        np.asarray(raw[tag][:channel_length], dtype=float) for tag in TRACE_CHANNEL_TAGS
    ])
    return peak_locations, channels


def count_secondary_peaks(
    peak_locations: np.ndarray,
    channels: np.ndarray,
    ratio: float = 0.33,
    start: int = 0,
    end: Optional[int] = None,
) -> int:
    """
    Count base calls with a secondary peak.

    A base call has a secondary peak when the second highest channel signal
    at its peak location is more than ``ratio`` times the highest.

    Parameters
    ----------
    peak_locations : np.ndarray
        Scan index of every base call
    channels : np.ndarray
        Channel intensities, shape (4, n_scans)
    ratio : float, optional
        Secondary to primary peak height ratio (default: 0.33)
    start, end : int, optional
        Slice of base calls to consider (default: all)

    Returns
    -------
    int
        Number of base calls with a secondary peak
    """
    locations = peak_locations[start:end]
    locations = locations[(locations >= 0) & (locations < channels.shape[1])]
    if len(locations) == 0:
        return 0

    signals = np.sort(channels[:, locations], axis=0)
    primary = signals[-1]
    secondary = signals[-2]

    with np.errstate(divide='ignore', invalid='ignore'):
        has_secondary = (primary > 0) & (secondary / primary > ratio)

    return int(np.count_nonzero(has_secondary))


def summarise_read(
    read_file: ReadFile,
    trim: bool = True,
    trim_cutoff: float = 0.0001,
    min_length: int = 20,
    max_secondary_peaks: Optional[int] = None,
    secondary_peak_ratio: float = 0.33,
) -> ReadRecord:
    """
    Load, trim and summarise a single trace file.

    Returns
    -------
    ReadRecord
        Record with statistics and, if the read passes the filters, the
        trimmed and correctly oriented sequence

    Raises
    ------
    ReadsetLoadError
        If the file cannot be parsed as an ABI trace
    """
    path = read_file.path
    try:
        record = SeqIO.read(str(path), "abi")
    except Exception as e:
        raise ReadsetLoadError(f"Failed to read trace file {path}: {e}") from e

    sequence = str(record.seq).upper()
    qualities = record.letter_annotations.get("phred_quality", [])

    if trim and len(qualities) == len(sequence) and len(sequence) > 0:
        start, end = trim_mott(qualities, cutoff=trim_cutoff)
    else:
        start, end = 0, len(sequence)

    trimmed = sequence[start:end]
    trimmed_qualities = qualities[start:end]

    raw_secondary = trimmed_secondary = None
    trace = extract_trace(record)
    if trace is not None:
        peak_locations, channels = trace
        raw_secondary = count_secondary_peaks(
            peak_locations, channels, ratio=secondary_peak_ratio
        )
        trimmed_secondary = count_secondary_peaks(
            peak_locations, channels, ratio=secondary_peak_ratio, start=start, end=end
        )

    included = len(trimmed) >= min_length
    if included and max_secondary_peaks is not None and trimmed_secondary is not None:
        included = trimmed_secondary <= max_secondary_peaks

    if read_file.direction == REVERSE:
        trimmed = reverse_complement(trimmed)

    return ReadRecord(
        file_path=str(path),
        folder_name=path.parent.name,
        file_name=path.name,
        readset_name=read_file.readset_name,
        direction=read_file.direction,
        included_in_readset=included,
        raw_length=len(sequence),
        trimmed_length=len(trimmed),
        trim_start=start,
        trim_finish=end,
        raw_secondary_peaks=raw_secondary,
        trimmed_secondary_peaks=trimmed_secondary,
        raw_mean_quality=float(np.mean(qualities)) if len(qualities) else None,
        trimmed_mean_quality=float(np.mean(trimmed_qualities)) if len(trimmed_qualities) else None,
        sequence=trimmed if included else None,
    )


def load_readsets(
    folder: Union[str, Path],
    forward_suffix: str,
    reverse_suffix: str,
    trim: bool = True,
    trim_cutoff: float = 0.0001,
    min_length: int = 20,
    max_secondary_peaks: Optional[int] = None,
    secondary_peak_ratio: float = 0.33,
    workers: int = 1,
) -> LoadedReadsets:
    """
    Find, summarise and group all reads below a folder.

    Parameters
    ----------
    folder : str or Path
        Parent folder of the trace files
    forward_suffix, reverse_suffix : str
        File name suffixes of forward and reverse reads
    trim : bool, optional
        Apply Mott quality trimming (default: True)
    trim_cutoff : float, optional
        Mott trimming cutoff (default: 0.0001)
    min_length : int, optional
        Minimum trimmed read length (default: 20)
    max_secondary_peaks : int, optional
        Maximum secondary peaks in the trimmed read (default: None, no limit)
    secondary_peak_ratio : float, optional
        Secondary peak height ratio (default: 0.33)
    workers : int, optional
        Number of worker processes (default: 1)

    Returns
    -------
    LoadedReadsets
        Readsets (only reads passing the filters) and all read records

    Raises
    ------
    ReadsetLoadError
        If the folder cannot be read, no read files match the suffixes, or a
        trace file cannot be parsed
    """
    read_files = find_read_files(folder, forward_suffix, reverse_suffix)
    if not read_files:
        raise ReadsetLoadError(
            f"No files ending in '{forward_suffix}' or '{reverse_suffix}' found in {folder}"
        )

    n_forward = sum(1 for f in read_files if f.direction == FORWARD)
    logger.info(
        f"Loading {len(read_files)} reads ({n_forward} forward, "
        f"{len(read_files) - n_forward} reverse)"
    )

    worker_func = partial(
        summarise_read,
        trim=trim,
        trim_cutoff=trim_cutoff,
        min_length=min_length,
        max_secondary_peaks=max_secondary_peaks,
        secondary_peak_ratio=secondary_peak_ratio,
    )

    if workers > 1 and len(read_files) > 1:
        with mp.Pool(processes=min(workers, len(read_files))) as pool:
            read_records = pool.map(worker_func, read_files)
    else:
        read_records = list(map(worker_func, read_files))

    readsets: Dict[str, List[ReadRecord]] = {}
    for record in read_records:
        if record.included_in_readset:
            readsets.setdefault(record.readset_name, []).append(record)

    n_excluded = sum(1 for r in read_records if not r.included_in_readset)
    if n_excluded:
        logger.info(f"  Excluded {n_excluded} reads failing length/secondary peak filters")
    logger.info(f"  Grouped {len(read_records) - n_excluded} reads into {len(readsets)} readsets")

    return LoadedReadsets(readsets=readsets, read_records=read_records)
