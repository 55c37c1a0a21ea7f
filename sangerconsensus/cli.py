#!/usr/bin/env python3
"""
sangerconsensus Command-Line Interface

Builds consensus sequences from a folder of Sanger trace files and writes
summary tables, sequences, an alignment and a guide tree.
"""

import argparse
import sys
import logging
from pathlib import Path
from typing import Dict

# Local imports
from . import __version__, alignment, config, core, reports, utils, visualization
from .models import ResultBundle

logger = logging.getLogger(__name__)

# Drawing and saving failures; other errors propagate
FIGURE_ERRORS = (OSError, ValueError, RuntimeError)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sangerconsensus',
        description='sangerconsensus: consensus sequences from groups of Sanger reads',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Forward reads end in _F.ab1, reverse reads in _R.ab1
  sangerconsensus traces/ --forward-suffix _F.ab1 --reverse-suffix _R.ab1

  # Protein-coding locus: align by translation against a reference
  sangerconsensus traces/ --ref-aa-seq MKVLAAGIVG... --output results/coi

  # Reject reads with stop codons in frame 2
  sangerconsensus traces/ --reject-stop-codons --reading-frame 2

  # Settings from a file (command-line options take precedence)
  sangerconsensus traces/ --config run.yaml

Notes:
  - MAFFT must be on PATH
  - The guide tree is for spotting problem sequences, not phylogenetic inference
        """
    )

    # Required arguments
    parser.add_argument(
        'input_folder',
        type=Path,
        help='Folder of trace files (searched recursively)'
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='YAML or JSON configuration file'
    )

    parser.add_argument(
        '--output', '--output-dir',
        type=Path,
        default=None,
        help='Output directory (default: results)'
    )

    parser.add_argument(
        '--prefix',
        type=str,
        default=None,
        help='Output file name prefix (default: input folder name)'
    )

    reads = parser.add_argument_group('reads')
    reads.add_argument('--forward-suffix', type=str, default=None,
                       help='File name suffix of forward reads (default: _F.ab1)')
    reads.add_argument('--reverse-suffix', type=str, default=None,
                       help='File name suffix of reverse reads (default: _R.ab1)')
    reads.add_argument('--no-trim', action='store_true',
                       help='Disable Mott quality trimming')
    reads.add_argument('--trim-cutoff', type=float, default=None,
                       help='Mott trimming cutoff (default: 0.0001)')
    reads.add_argument('--min-length', type=int, default=None,
                       help='Minimum trimmed read length (default: 20)')
    reads.add_argument('--max-secondary-peaks', type=int, default=None,
                       help='Exclude reads with more secondary peaks than this (default: no limit)')
    reads.add_argument('--secondary-peak-ratio', type=float, default=None,
                       help='Secondary to primary peak height ratio (default: 0.33)')

    consensus = parser.add_argument_group('consensus')
    consensus.add_argument('--min-reads', type=int, default=None,
                           help='Minimum reads per readset, at least 2 (default: 2)')
    consensus.add_argument('--min-information', type=float, default=None,
                           help='Minimum fraction of reads with a base at a position (default: 0.5)')
    consensus.add_argument('--threshold', type=float, default=None,
                           help='Maximum fraction of information lost per position (default: 0.5)')
    consensus.add_argument('--ref-aa-seq', type=str, default=None,
                           help='Reference amino acid sequence; aligns by translation in frame 1')
    consensus.add_argument('--genetic-code', type=int, default=None,
                           help='NCBI translation table id (default: 1)')
    consensus.add_argument('--reject-stop-codons', action='store_true',
                           help='Exclude reads with stop codons in the reading frame')
    consensus.add_argument('--reading-frame', type=int, choices=[1, 2, 3], default=None,
                           help='Reading frame for stop codon detection (default: 1)')

    tree = parser.add_argument_group('guide tree')
    tree.add_argument('--distance-model', choices=['raw', 'K80'], default=None,
                      help='Pairwise distance model (default: K80)')
    tree.add_argument('--no-tree', action='store_true',
                      help='Skip the guide tree')

    parser.add_argument(
        '--threads',
        type=int,
        default=None,
        help='Number of parallel workers (default: all CPUs)'
    )

    parser.add_argument(
        '--no-figures',
        action='store_true',
        help='Skip drawing the guide tree and read quality figures'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging verbosity (default: INFO)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'sangerconsensus {__version__}'
    )

    return parser


def config_from_args(args: argparse.Namespace) -> config.PipelineConfig:
    """
    Assemble the run configuration.

    Precedence, lowest first: defaults, --config file, SANGERCONSENSUS_*
    environment variables, command-line options.
    """
    if args.config is not None:
        cfg = config.load_config_from_file(args.config)
    else:
        cfg = config.get_default_config()

    env_overrides = config.load_config_from_env()
    if env_overrides:
        cfg = cfg.update(**env_overrides)

    cli_values = {
        'readsets__forward_suffix': args.forward_suffix,
        'readsets__reverse_suffix': args.reverse_suffix,
        'readsets__trim_cutoff': args.trim_cutoff,
        'readsets__min_length': args.min_length,
        'readsets__max_secondary_peaks': args.max_secondary_peaks,
        'readsets__secondary_peak_ratio': args.secondary_peak_ratio,
        'consensus__min_reads': args.min_reads,
        'consensus__min_information': args.min_information,
        'consensus__threshold': args.threshold,
        'consensus__ref_aa_seq': args.ref_aa_seq,
        'consensus__genetic_code': args.genetic_code,
        'consensus__reading_frame': args.reading_frame,
        'phylogenetic__distance_model': args.distance_model,
        'processors': args.threads,
        'output_dir': args.output,
        'log_level': args.log_level,
    }
    overrides = {key: value for key, value in cli_values.items() if value is not None}

    if args.no_trim:
        overrides['readsets__trim'] = False
    if args.reject_stop_codons:
        overrides['consensus__accept_stop_codons'] = False
    if args.no_tree:
        overrides['phylogenetic__build_tree'] = False
    if args.no_figures:
        overrides['make_figures'] = False

    return cfg.update(**overrides)


def draw_figures(bundle: ResultBundle, output_dir: Path, prefix: str) -> Dict[str, Path]:
    """Draw figures; a figure that fails to draw or save is logged and skipped."""
    files = {}

    if bundle.tree is not None:
        tree_png = output_dir / f"{prefix}_guide_tree.png"
        try:
            visualization.plot_consensus_tree(bundle.tree, tree_png)
            files['guide_tree_plot'] = tree_png
        except FIGURE_ERRORS as e:
            logger.warning(f"  ⚠ Guide tree plot failed: {e}")

    quality_png = output_dir / f"{prefix}_read_quality.png"
    try:
        visualization.plot_read_quality(bundle.read_records, quality_png)
        if quality_png.exists():
            files['read_quality_plot'] = quality_png
    except FIGURE_ERRORS as e:
        logger.warning(f"  ⚠ Read quality plot failed: {e}")

    return files


def run_pipeline(input_folder: Path, cfg: config.PipelineConfig, prefix: str) -> Dict[str, Path]:
    """Run the pipeline and write all outputs; returns written file paths."""
    alignment.check_mafft()

    bundle = core.run_from_config(input_folder, cfg)

    output_dir = utils.create_output_directory(cfg.output_dir)
    files = reports.write_results(bundle, output_dir, prefix=prefix)
    if cfg.make_figures:
        files.update(draw_figures(bundle, output_dir, prefix))

    logger.info("Output files:")
    for name, path in files.items():
        logger.info(f"  {name}: {path}")

    return files


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.input_folder.is_dir():
        print(f"Error: Input folder not found: {args.input_folder}", file=sys.stderr)
        return 1

    try:
        cfg = config_from_args(args)
    except (ValueError, TypeError, FileNotFoundError, ImportError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    output_dir = cfg.output_dir.resolve()
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = utils.sanitize_filename(args.prefix or args.input_folder.resolve().name)

    log_file = output_dir / f"{prefix}_pipeline.log"
    utils.setup_logging(log_level=cfg.log_level, log_file=str(log_file))

    for warning in config.validate_config(cfg):
        logger.warning(f"Configuration: {warning}")

    try:
        run_pipeline(args.input_folder, cfg, prefix)
        return 0

    except KeyboardInterrupt:
        print("\n\nPipeline interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"Pipeline failed with error: {e}", exc_info=True)
        print(f"\nError: Pipeline failed. Check log file: {log_file}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
