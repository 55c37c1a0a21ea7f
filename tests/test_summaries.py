"""
Tests for per-consensus summary statistics.

Tests cover:
- min/max/median of read metrics
- Missing values (None) ignored per metric
- Join of read statistics with consensus metrics
- Ordering, idempotence, and consensus sequences without reads
"""

import math
import unittest

from sangerconsensus.models import ConsensusResult, ReadRecord
from sangerconsensus.summaries import aggregate, read_statistics, summarise_metric


def make_read(path, consensus_name=None, quality=30.0, peaks=1):
    return ReadRecord(
        file_path=path,
        folder_name="plate1",
        file_name=path.split("/")[-1],
        readset_name=consensus_name or "unused",
        direction="forward",
        included_in_readset=True,
        raw_secondary_peaks=peaks,
        trimmed_secondary_peaks=peaks,
        raw_mean_quality=quality,
        trimmed_mean_quality=quality,
        included_in_consensus=consensus_name is not None,
        consensus_name=consensus_name,
    )


class TestSummariseMetric(unittest.TestCase):

    def test_min_max_median(self):
        self.assertEqual(summarise_metric([3, 1, 4, 2]), {"min": 1.0, "max": 4.0, "med": 2.5})

    def test_missing_values_ignored(self):
        self.assertEqual(summarise_metric([None, 5, float("nan"), 7]), {"min": 5.0, "max": 7.0, "med": 6.0})

    def test_no_values(self):
        stats = summarise_metric([None, None])
        self.assertTrue(all(math.isnan(v) for v in stats.values()))


class TestReadStatistics(unittest.TestCase):

    def test_twelve_columns(self):
        stats = read_statistics([make_read("/a", "s1", 20.0, 0), make_read("/b", "s1", 40.0, 4)])

        self.assertEqual(len(stats), 12)
        self.assertEqual(stats["trimmed_mean_quality_min"], 20.0)
        self.assertEqual(stats["trimmed_mean_quality_max"], 40.0)
        self.assertEqual(stats["raw_secondary_peaks_med"], 2.0)


class TestAggregate(unittest.TestCase):
    """Test building summaries from consensus results and reads."""

    def setUp(self):
        self.results = [
            ConsensusResult(readset_name="s2", consensus="ACGT", n_reads=2, n_reads_used=2, consensus_length=4),
            ConsensusResult(readset_name="s1", consensus="ACGTT", n_reads=3, n_reads_used=3, consensus_length=5),
            ConsensusResult(readset_name="s3", consensus=None, n_reads=2),
        ]
        self.reads = [
            make_read("/r1", "s1", 30.0),
            make_read("/r2", "s1", 34.0),
            make_read("/r3", "s1", 20.0),
            make_read("/r4", "s2", 40.0),
            make_read("/r5", "s2", 42.0),
            make_read("/r6", None, 10.0),
        ]

    def test_one_summary_per_built_consensus_in_result_order(self):
        summaries = aggregate(self.results, self.reads)

        self.assertEqual([s.consensus_name for s in summaries], ["s2", "s1"])

    def test_statistics_use_only_included_reads(self):
        summaries = {s.consensus_name: s for s in aggregate(self.results, self.reads)}

        self.assertEqual(summaries["s1"].read_statistics["trimmed_mean_quality_min"], 20.0)
        self.assertEqual(summaries["s1"].read_statistics["trimmed_mean_quality_med"], 30.0)
        self.assertEqual(summaries["s2"].read_statistics["trimmed_mean_quality_max"], 42.0)

    def test_consensus_metrics_joined(self):
        summary = aggregate(self.results, self.reads)[1]
        row = summary.as_row()

        self.assertEqual(row["consensus_name"], "s1")
        self.assertEqual(row["consensus_length"], 5)
        self.assertEqual(row["n_reads"], 3)
        self.assertIn("raw_mean_quality_max", row)

    def test_idempotent(self):
        self.assertEqual(aggregate(self.results, self.reads), aggregate(self.results, self.reads))

    def test_consensus_without_reads_dropped(self):
        results = self.results + [ConsensusResult(readset_name="s4", consensus="AAAA")]

        with self.assertLogs("sangerconsensus.summaries", level="WARNING"):
            summaries = aggregate(results, self.reads)

        self.assertNotIn("s4", [s.consensus_name for s in summaries])

    def test_empty_inputs(self):
        self.assertEqual(aggregate([], []), [])


if __name__ == '__main__':
    unittest.main()
