"""
Unit and integration tests for core pipeline orchestration.

Tests cover:
- Readset filtering by minimum read count
- Read stamping after consensus building
- End-to-end run with an injected loader and builder and MAFFT mocked
- Recoverable per-readset failures and fatal errors
- Mapping a PipelineConfig onto the pipeline
- Building readsets across a worker pool

Loader and builder are module-level functions so they can be pickled by
multiprocessing; TestParallelBuild runs readsets across a worker pool.
"""

import unittest
from unittest.mock import patch

import pandas as pd
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from sangerconsensus import core
from sangerconsensus.config import get_default_config
from sangerconsensus.errors import (
    AlignmentError,
    ConsensusBuildError,
    NoValidReadsetsError,
    ReadsetLoadError,
)
from sangerconsensus.models import ConsensusResult, ReadRecord
from sangerconsensus.readsets import LoadedReadsets
from sangerconsensus.scheduling import choose_workers

CONSENSUS = {
    "A": "ACGTACGTACGTACGTACGT",
    "B": "ACGTACGTACGTACGTACGA",
    "C": "ACGAACGTACGTTCGTACGA",
}

READSET_SIZES = {"A": 5, "B": 1, "C": 3}
WIDE_READSET_SIZES = {"A": 2, "B": 2, "C": 2}


def make_read(readset_name, i, included=True):
    path = f"/traces/{readset_name}_{i}.ab1"
    return ReadRecord(
        file_path=path,
        folder_name="traces",
        file_name=path.split("/")[-1],
        readset_name=readset_name,
        direction="forward" if i % 2 == 0 else "reverse",
        included_in_readset=included,
        trimmed_mean_quality=30.0 + i,
        raw_mean_quality=25.0 + i,
        raw_secondary_peaks=i,
        trimmed_secondary_peaks=0,
        sequence=CONSENSUS[readset_name] if included else None,
    )


def load_sizes(sizes):
    records = []
    readsets = {}
    for name, size in sizes.items():
        reads = [make_read(name, i) for i in range(size)]
        readsets[name] = reads
        records.extend(reads)
    excluded = make_read("A", 99, included=False)
    records.append(excluded)
    return LoadedReadsets(readsets=readsets, read_records=records)


def fake_loader(folder, forward_suffix, reverse_suffix, workers=1, **kwargs):
    return load_sizes(READSET_SIZES)


def wide_loader(folder, forward_suffix, reverse_suffix, workers=1, **kwargs):
    return load_sizes(WIDE_READSET_SIZES)


def fake_builder(reads, workers=1, **kwargs):
    name = reads[0].readset_name
    return ConsensusResult(
        readset_name=name,
        consensus=CONSENSUS[name],
        alignment=tuple(SeqRecord(Seq(r.sequence), id=r.file_path, description="") for r in reads),
        n_reads=len(reads),
        n_reads_used=len(reads),
        consensus_length=len(CONSENSUS[name]),
    )


def failing_builder(reads, **kwargs):
    if reads[0].readset_name == "A":
        raise AlignmentError("MAFFT alignment failed")
    return fake_builder(reads, **kwargs)


def rejecting_builder(reads, **kwargs):
    if reads[0].readset_name == "A":
        return ConsensusResult(readset_name="A", consensus=None, n_reads=len(reads))
    return fake_builder(reads, **kwargs)


def broken_builder(reads, **kwargs):
    raise RuntimeError("unexpected")


def fake_align(sequences, threads=1, **kwargs):
    return MultipleSeqAlignment([
        SeqRecord(Seq(seq), id=name, description="") for name, seq in sequences.items()
    ])


class TestHelpers(unittest.TestCase):

    def test_filter_readsets(self):
        readsets = {"a": [1, 2], "b": [1], "c": [1, 2, 3]}

        self.assertEqual(list(core.filter_readsets(readsets, 2)), ["a", "c"])
        self.assertEqual(list(core.filter_readsets(readsets, 3)), ["c"])

    def test_stamp_reads(self):
        reads = [make_read("A", 0), make_read("A", 1), make_read("C", 0)]
        results = [
            fake_builder(reads[:1]),
            ConsensusResult(
                readset_name="C",
                consensus=None,
                alignment=(SeqRecord(Seq("ACGT"), id=reads[2].file_path),),
            ),
        ]

        stamped = core.stamp_reads(reads, results)

        self.assertEqual([r.included_in_consensus for r in stamped], [True, False, False])
        self.assertEqual([r.consensus_name for r in stamped], ["A", None, None])
        self.assertFalse(reads[0].included_in_consensus)

    def test_build_worker_recoverable(self):
        outcome = core._build_worker(("A", [make_read("A", 0)]), builder=failing_builder)

        self.assertIsNone(outcome.result)
        self.assertIn("MAFFT", outcome.error)

    def test_build_worker_unexpected_error_propagates(self):
        with self.assertRaises(RuntimeError):
            core._build_worker(("A", [make_read("A", 0)]), builder=broken_builder)


@patch("sangerconsensus.alignment.align_unconstrained", side_effect=fake_align)
class TestMakeConsensusSeqs(unittest.TestCase):
    """End-to-end runs with injected loader and builder."""

    def run_pipeline(self, **kwargs):
        params = dict(
            forward_suffix="_F.ab1",
            reverse_suffix="_R.ab1",
            processors=1,
            loader=fake_loader,
            builder=fake_builder,
        )
        params.update(kwargs)
        return core.make_consensus_seqs("/traces", **params)

    def test_readsets_below_min_reads_skipped(self, mock_align):
        bundle = self.run_pipeline()

        self.assertEqual(list(bundle.consensus_sequences), ["A", "C"])
        self.assertEqual([r.readset_name for r in bundle.consensus_results], ["A", "C"])

    def test_read_inclusion_flags(self, mock_align):
        bundle = self.run_pipeline()

        self.assertEqual(len(bundle.read_records), 10)
        for read in bundle.read_records:
            if read.readset_name in ("A", "C") and read.included_in_readset:
                self.assertTrue(read.included_in_consensus)
                self.assertEqual(read.consensus_name, read.readset_name)
            else:
                self.assertFalse(read.included_in_consensus)
                self.assertIsNone(read.consensus_name)

    def test_summaries(self, mock_align):
        bundle = self.run_pipeline()

        self.assertEqual([s.consensus_name for s in bundle.consensus_summaries], ["A", "C"])
        summary_a = bundle.consensus_summaries[0]
        self.assertEqual(summary_a.read_statistics["trimmed_mean_quality_min"], 30.0)
        self.assertEqual(summary_a.read_statistics["trimmed_mean_quality_max"], 34.0)
        self.assertEqual(summary_a.metrics["n_reads"], 5)

    def test_alignment_and_tree(self, mock_align):
        bundle = self.run_pipeline()

        self.assertEqual([r.id for r in bundle.alignment], ["A", "C"])
        self.assertEqual(sorted(c.name for c in bundle.tree.get_terminals()), ["1", "2"])
        for clade in bundle.tree.find_clades():
            if clade.branch_length is not None:
                self.assertGreaterEqual(clade.branch_length, 0)

    def test_builder_receives_inner_workers(self, mock_align):
        calls = []

        def recording_builder(reads, **kwargs):
            calls.append(kwargs)
            return fake_builder(reads, **kwargs)

        self.run_pipeline(builder=recording_builder, min_information=0.6, reading_frame=2)

        self.assertEqual(len(calls), 2)
        self.assertEqual(calls[0]["workers"], 1)
        self.assertEqual(calls[0]["min_information"], 0.6)
        self.assertEqual(calls[0]["reading_frame"], 2)

    def test_recoverable_failure_excludes_readset(self, mock_align):
        bundle = self.run_pipeline(builder=failing_builder)

        self.assertEqual(list(bundle.consensus_sequences), ["C"])
        self.assertEqual(len(bundle.consensus_results), 1)
        self.assertFalse(any(r.included_in_consensus for r in bundle.read_records if r.readset_name == "A"))
        self.assertIsNone(bundle.alignment)
        self.assertIsNone(bundle.tree)

    def test_null_consensus_kept_in_results(self, mock_align):
        bundle = self.run_pipeline(builder=rejecting_builder)

        self.assertEqual([r.readset_name for r in bundle.consensus_results], ["A", "C"])
        self.assertEqual(list(bundle.consensus_sequences), ["C"])
        self.assertEqual([s.consensus_name for s in bundle.consensus_summaries], ["C"])

    def test_unexpected_error_propagates(self, mock_align):
        with self.assertRaises(RuntimeError):
            self.run_pipeline(builder=broken_builder)

    def test_no_valid_readsets(self, mock_align):
        with self.assertRaises(NoValidReadsetsError):
            self.run_pipeline(min_reads=6)

    def test_min_reads_below_two(self, mock_align):
        with self.assertRaises(ValueError):
            self.run_pipeline(min_reads=1)

    def test_loader_error_is_fatal(self, mock_align):
        def bad_loader(*args, **kwargs):
            raise ReadsetLoadError("folder missing")

        with self.assertRaises(ReadsetLoadError):
            self.run_pipeline(loader=bad_loader)

    def test_tree_skipped(self, mock_align):
        bundle = self.run_pipeline(build_tree=False)

        self.assertIsNotNone(bundle.alignment)
        self.assertIsNone(bundle.tree)

    def test_summary_frames(self, mock_align):
        bundle = self.run_pipeline()

        reads_df = bundle.read_summary_frame()
        self.assertEqual(len(reads_df), 10)
        self.assertNotIn("sequence", reads_df.columns)
        self.assertEqual(len(bundle.consensus_summary_frame()), 2)


@patch("sangerconsensus.alignment.align_unconstrained", side_effect=fake_align)
class TestParallelBuild(unittest.TestCase):
    """Readsets built across a process pool match a single-worker run."""

    def run_pipeline(self, processors):
        splits = []

        def recording_choose_workers(*args, **kwargs):
            split = choose_workers(*args, **kwargs)
            splits.append(split)
            return split

        with patch("sangerconsensus.core.choose_workers", side_effect=recording_choose_workers):
            bundle = core.make_consensus_seqs(
                "/traces",
                forward_suffix="_F.ab1",
                reverse_suffix="_R.ab1",
                processors=processors,
                loader=wide_loader,
                builder=fake_builder,
            )
        return bundle, splits[0]

    def test_pool_chosen_for_many_small_readsets(self, mock_align):
        bundle, split = self.run_pipeline(processors=3)

        self.assertGreater(split.outer, 1)
        self.assertEqual(split.inner, 1)
        self.assertEqual(list(bundle.consensus_sequences), ["A", "B", "C"])

    def test_matches_serial_run(self, mock_align):
        parallel, _ = self.run_pipeline(processors=3)
        serial, serial_split = self.run_pipeline(processors=1)

        self.assertEqual(serial_split.outer, 1)
        self.assertEqual(parallel.consensus_sequences, serial.consensus_sequences)
        self.assertEqual(
            [r.readset_name for r in parallel.consensus_results],
            [r.readset_name for r in serial.consensus_results],
        )
        pd.testing.assert_frame_equal(
            parallel.consensus_summary_frame(), serial.consensus_summary_frame()
        )

    def test_included_reads_match_one_summary(self, mock_align):
        bundle, _ = self.run_pipeline(processors=3)

        names = [s.consensus_name for s in bundle.consensus_summaries]
        included = [r for r in bundle.read_records if r.included_in_consensus]
        self.assertEqual(len(included), 6)
        for read in included:
            self.assertEqual(names.count(read.consensus_name), 1)


class TestRunFromConfig(unittest.TestCase):

    def test_config_values_passed(self):
        cfg = get_default_config().update(
            consensus__min_reads=3,
            readsets__forward_suffix="_fwd.ab1",
            phylogenetic__distance_model="raw",
            processors=2,
        )
        with patch("sangerconsensus.core.make_consensus_seqs") as mock_run:
            core.run_from_config("/traces", cfg, loader=fake_loader)

        kwargs = mock_run.call_args.kwargs
        self.assertEqual(kwargs["min_reads"], 3)
        self.assertEqual(kwargs["forward_suffix"], "_fwd.ab1")
        self.assertEqual(kwargs["distance_model"], "raw")
        self.assertEqual(kwargs["processors"], 2)
        self.assertIs(kwargs["loader"], fake_loader)


if __name__ == '__main__':
    unittest.main()
