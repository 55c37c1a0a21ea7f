"""
Tests for configuration management.

Tests cover:
- Defaults and validation in __post_init__
- Nested updates with double underscore notation
- JSON/YAML round trips
- Environment variable overrides
- Configuration warnings and processor resolution
"""

import os
import unittest
from unittest.mock import patch
import tempfile
import shutil
from pathlib import Path

from sangerconsensus import config


class TestDefaults(unittest.TestCase):

    def test_default_values(self):
        cfg = config.get_default_config()

        self.assertEqual(cfg.consensus.min_reads, 2)
        self.assertEqual(cfg.readsets.trim_cutoff, 0.0001)
        self.assertEqual(cfg.readsets.min_length, 20)
        self.assertIsNone(cfg.readsets.max_secondary_peaks)
        self.assertEqual(cfg.readsets.secondary_peak_ratio, 0.33)
        self.assertEqual(cfg.consensus.min_information, 0.5)
        self.assertEqual(cfg.consensus.threshold, 0.5)
        self.assertTrue(cfg.consensus.accept_stop_codons)
        self.assertEqual(cfg.phylogenetic.distance_model, "K80")
        self.assertIsNone(cfg.processors)


class TestValidation(unittest.TestCase):

    def test_min_reads_below_two(self):
        with self.assertRaises(ValueError):
            config.ConsensusConfig(min_reads=1)

    def test_unknown_genetic_code(self):
        with self.assertRaises(ValueError):
            config.ConsensusConfig(genetic_code=99)

    def test_reading_frame(self):
        with self.assertRaises(ValueError):
            config.ConsensusConfig(reading_frame=4)

    def test_same_suffixes(self):
        with self.assertRaises(ValueError):
            config.ReadsetConfig(forward_suffix=".ab1", reverse_suffix=".ab1")

    def test_distance_model(self):
        with self.assertRaises(ValueError):
            config.PhylogeneticConfig(distance_model="JC69")

    def test_processors(self):
        with self.assertRaises(ValueError):
            config.PipelineConfig(processors=0)

    def test_ref_aa_seq_normalised(self):
        cfg = config.ConsensusConfig(ref_aa_seq="  mkvl\n")
        self.assertEqual(cfg.ref_aa_seq, "MKVL")


class TestUpdate(unittest.TestCase):

    def test_nested_update(self):
        cfg = config.get_default_config().update(
            consensus__min_reads=3,
            readsets__trim=False,
            processors=2,
        )

        self.assertEqual(cfg.consensus.min_reads, 3)
        self.assertFalse(cfg.readsets.trim)
        self.assertEqual(cfg.processors, 2)

    def test_original_unchanged(self):
        cfg = config.get_default_config()
        cfg.update(consensus__min_reads=3)

        self.assertEqual(cfg.consensus.min_reads, 2)

    def test_update_validates(self):
        with self.assertRaises(ValueError):
            config.get_default_config().update(consensus__min_reads=1)


class TestFileIO(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_json_round_trip(self):
        cfg = config.get_default_config().update(
            readsets__forward_suffix="_fwd.ab1",
            consensus__ref_aa_seq="MKV",
            output_dir=Path("out"),
        )
        path = self.tmpdir / "config.json"
        cfg.to_json(path)

        self.assertEqual(config.load_config_from_file(path), cfg)

    @unittest.skipUnless(config.YAML_AVAILABLE, "PyYAML not installed")
    def test_yaml_round_trip(self):
        cfg = config.get_default_config().update(phylogenetic__build_tree=False)
        path = self.tmpdir / "config.yaml"
        cfg.to_yaml(path)

        self.assertEqual(config.load_config_from_file(path), cfg)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            config.load_config_from_file(self.tmpdir / "missing.json")

    def test_unsupported_format(self):
        path = self.tmpdir / "config.toml"
        path.write_text("")
        with self.assertRaises(ValueError):
            config.load_config_from_file(path)


class TestEnvironment(unittest.TestCase):

    @patch.dict(os.environ, {
        "SANGERCONSENSUS_CONSENSUS__MIN_READS": "3",
        "SANGERCONSENSUS_READSETS__TRIM": "false",
        "SANGERCONSENSUS_CONSENSUS__THRESHOLD": "0.25",
    })
    def test_overrides(self):
        overrides = config.load_config_from_env()

        self.assertEqual(overrides["consensus__min_reads"], 3)
        self.assertIs(overrides["readsets__trim"], False)
        self.assertEqual(overrides["consensus__threshold"], 0.25)

        cfg = config.get_default_config().update(**overrides)
        self.assertEqual(cfg.consensus.min_reads, 3)


class TestHelpers(unittest.TestCase):

    def test_validate_config_warnings(self):
        cfg = config.get_default_config().update(consensus__reading_frame=2)
        warnings = config.validate_config(cfg)

        self.assertTrue(any("reading_frame" in w for w in warnings))

    def test_default_config_has_no_warnings(self):
        with patch("sangerconsensus.config.os.cpu_count", return_value=8):
            self.assertEqual(config.validate_config(config.get_default_config()), [])

    def test_resolve_processors(self):
        with patch("sangerconsensus.config.os.cpu_count", return_value=6):
            self.assertEqual(config.resolve_processors(None), 6)
        with patch("sangerconsensus.config.os.cpu_count", return_value=None):
            self.assertEqual(config.resolve_processors(None), 1)
        self.assertEqual(config.resolve_processors(3), 3)

        with self.assertRaises(ValueError):
            config.resolve_processors(0)


if __name__ == '__main__':
    unittest.main()
