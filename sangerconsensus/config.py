"""
Configuration Management for sangerconsensus

This module provides a configuration system using frozen dataclasses for
parameter management. The configuration system supports:

1. Default parameter values for Sanger read processing
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation in __post_init__
5. Hierarchical configuration with component-specific settings

Configuration Structure:
- ReadsetConfig: Read discovery, quality trimming and read filters
- ConsensusConfig: Readset size filter and consensus calling parameters
- PhylogeneticConfig: Guide tree construction parameters
- PipelineConfig: Master configuration combining all components

Example Usage:
    >>> from sangerconsensus.config import get_default_config
    >>>
    >>> config = get_default_config().update(
    ...     readsets__forward_suffix="_F.ab1",
    ...     readsets__reverse_suffix="_R.ab1",
    ...     consensus__min_reads=3,
    ... )
"""

from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Union
import os
import json
import logging

from Bio.Data import CodonTable

logger = logging.getLogger(__name__)

# Try to import YAML support
try:
    import yaml
    YAML_AVAILABLE = True
except ImportError:
    YAML_AVAILABLE = False
    logger.debug("PyYAML not available; YAML config files not supported")


# ============================================================================
# Readset Configuration
# ============================================================================

@dataclass(frozen=True)
class ReadsetConfig:
    """
    Configuration for finding, trimming and filtering reads.

    Attributes
    ----------
    forward_suffix : str
        File name suffix of forward reads, e.g. "_F.ab1" (default: "_F.ab1")

    reverse_suffix : str
        File name suffix of reverse reads, which are reverse complemented
        (default: "_R.ab1")

    trim : bool
        Quality trim reads with the modified Mott algorithm (default: True)

    trim_cutoff : float
        Error probability cutoff for Mott trimming (default: 0.0001).
        Only used if trim is True.

    min_length : int
        Reads shorter than this after trimming are excluded (default: 20)

    max_secondary_peaks : int, optional
        Reads with more secondary peaks than this are excluded
        (default: None, no secondary peak filter)

    secondary_peak_ratio : float
        Height of a secondary peak relative to the primary peak above which
        it is counted (default: 0.33)
    """
    forward_suffix: str = "_F.ab1"
    reverse_suffix: str = "_R.ab1"
    trim: bool = True
    trim_cutoff: float = 0.0001
    min_length: int = 20
    max_secondary_peaks: Optional[int] = None
    secondary_peak_ratio: float = 0.33

    def __post_init__(self):
        """Validate configuration parameters."""
        if not self.forward_suffix or not self.reverse_suffix:
            raise ValueError("forward_suffix and reverse_suffix must be non-empty")
        if self.forward_suffix == self.reverse_suffix:
            raise ValueError("forward_suffix and reverse_suffix must differ")
        if not 0 < self.trim_cutoff < 1:
            raise ValueError("trim_cutoff must be between 0 and 1")
        if self.min_length < 1:
            raise ValueError("min_length must be at least 1")
        if self.max_secondary_peaks is not None and self.max_secondary_peaks < 0:
            raise ValueError("max_secondary_peaks must be non-negative")
        if not 0 < self.secondary_peak_ratio < 1:
            raise ValueError("secondary_peak_ratio must be between 0 and 1")


# ============================================================================
# Consensus Configuration
# ============================================================================

@dataclass(frozen=True)
class ConsensusConfig:
    """
    Configuration for readset filtering and consensus calling.

    Attributes
    ----------
    min_reads : int
        Minimum number of reads needed to build a consensus (default: 2).
        Readsets with fewer reads are dropped before building.

    min_information : float
        Minimum fraction of reads that must have a base at a position for a
        consensus base to be called there (default: 0.5)

    threshold : float
        Maximum fraction of information that may be lost at a position
        (default: 0.5). Bases are added to the call, as IUPAC ambiguity
        codes, until less than this fraction is ignored.

    ref_aa_seq : str, optional
        Reference amino acid sequence. When supplied, reads and consensus
        sequences are aligned by translation and the reading frame is 1.

    genetic_code : int
        NCBI translation table id (default: 1, the standard code)

    accept_stop_codons : bool
        Keep reads with stop codons (default: True). If False, reads with
        stop codons in reading_frame are rejected.

    reading_frame : int
        1, 2 or 3 (default: 1). Only used if accept_stop_codons is False.
    """
    min_reads: int = 2
    min_information: float = 0.5
    threshold: float = 0.5
    ref_aa_seq: Optional[str] = None
    genetic_code: int = 1
    accept_stop_codons: bool = True
    reading_frame: int = 1

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.min_reads < 2:
            raise ValueError("min_reads must be at least 2")
        if not 0 < self.min_information <= 1:
            raise ValueError("min_information must be between 0 and 1")
        if not 0 < self.threshold <= 1:
            raise ValueError("threshold must be between 0 and 1")
        if self.genetic_code not in CodonTable.unambiguous_dna_by_id:
            raise ValueError(f"Unknown genetic_code table id: {self.genetic_code}")
        if self.reading_frame not in (1, 2, 3):
            raise ValueError("reading_frame must be 1, 2 or 3")
        if self.ref_aa_seq is not None:
            object.__setattr__(self, 'ref_aa_seq', self.ref_aa_seq.strip().upper())
            if not self.ref_aa_seq:
                raise ValueError("ref_aa_seq must not be empty")
            if self.reading_frame != 1:
                logger.warning(
                    f"reading_frame={self.reading_frame} is ignored when ref_aa_seq "
                    "is supplied; reads are kept in frame 1"
                )


# ============================================================================
# Phylogenetic Configuration
# ============================================================================

@dataclass(frozen=True)
class PhylogeneticConfig:
    """
    Configuration for the consensus alignment and guide tree.

    Attributes
    ----------
    build_tree : bool
        Whether to build the guide tree (default: True)

    distance_model : str
        Pairwise distance model (default: "K80")
        Options: "raw" (p-distance), "K80" (Kimura 2-parameter)

    Notes
    -----
    The guide tree is a neighbour-joining tree with negative branch lengths
    made positive. It is a viewing aid for spotting bad consensus sequences,
    not a phylogenetic estimate.
    """
    build_tree: bool = True
    distance_model: str = "K80"

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.distance_model not in ["raw", "K80"]:
            raise ValueError(f"Invalid distance_model: {self.distance_model}")


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for the complete pipeline.

    Attributes
    ----------
    readsets : ReadsetConfig
        Read discovery and filtering configuration

    consensus : ConsensusConfig
        Consensus building configuration

    phylogenetic : PhylogeneticConfig
        Guide tree configuration

    processors : int, optional
        Total number of workers (default: None, all available CPUs)

    log_level : str
        Logging level (default: "INFO")

    output_dir : Path
        Base output directory (default: "results")

    make_figures : bool
        Draw the guide tree and read quality figures (default: True)
    """
    readsets: ReadsetConfig = field(default_factory=ReadsetConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    phylogenetic: PhylogeneticConfig = field(default_factory=PhylogeneticConfig)
    processors: Optional[int] = None
    log_level: str = "INFO"
    output_dir: Path = field(default_factory=lambda: Path("results"))
    make_figures: bool = True

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.output_dir, str):
            object.__setattr__(self, 'output_dir', Path(self.output_dir))

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

        if self.processors is not None and self.processors < 1:
            raise ValueError("processors must be at least 1")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Create a new configuration with updated values.

        Supports nested updates using double underscore notation:
        config.update(consensus__min_reads=3)

        Parameters
        ----------
        **kwargs
            Configuration parameters to update. Use double underscore
            for nested parameters (e.g., readsets__trim_cutoff)

        Returns
        -------
        PipelineConfig
            New configuration object with updates
        """
        top_level = {}
        nested = {}

        for key, value in kwargs.items():
            if '__' in key:
                component, param = key.split('__', 1)
                nested.setdefault(component, {})[param] = value
            else:
                top_level[key] = value

        for component, updates in nested.items():
            current = getattr(self, component)
            top_level[component] = replace(current, **updates)

        return replace(self, **top_level)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a nested dictionary."""
        return asdict(self)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """
        Save configuration to YAML file.

        Raises
        ------
        ImportError
            If PyYAML is not installed
        """
        if not YAML_AVAILABLE:
            raise ImportError("PyYAML is required to save YAML config files")

        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {path}")

    def to_json(self, output_path: Union[str, Path]) -> None:
        """Save configuration to JSON file."""
        config_dict = _convert_paths_to_strings(self.to_dict())

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config_dict, f, indent=2)

        logger.info(f"Configuration saved to {path}")


# ============================================================================
# Helper Functions
# ============================================================================

def get_default_config() -> PipelineConfig:
    """Get default pipeline configuration."""
    return PipelineConfig()


def resolve_processors(processors: Optional[int]) -> int:
    """
    Resolve the worker budget to a concrete count.

    None means all available CPUs. The result is computed once at pipeline
    entry and passed explicitly to every component.
    """
    if processors is None:
        return os.cpu_count() or 1
    if processors < 1:
        raise ValueError(f"processors must be >= 1, got {processors}")
    return int(processors)


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ValueError
        If file format is not supported
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()

    if suffix in ['.yaml', '.yml']:
        if not YAML_AVAILABLE:
            raise ImportError("PyYAML is required to load YAML config files")
        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
    elif suffix == '.json':
        with open(path, 'r') as f:
            config_dict = json.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {suffix}")

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict)


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """Convert dictionary to PipelineConfig object."""
    config_dict = dict(config_dict)
    nested_configs = {}

    if 'readsets' in config_dict:
        nested_configs['readsets'] = ReadsetConfig(**config_dict.pop('readsets'))

    if 'consensus' in config_dict:
        nested_configs['consensus'] = ConsensusConfig(**config_dict.pop('consensus'))

    if 'phylogenetic' in config_dict:
        nested_configs['phylogenetic'] = PhylogeneticConfig(**config_dict.pop('phylogenetic'))

    if config_dict.get('output_dir') is not None:
        config_dict['output_dir'] = Path(config_dict['output_dir'])

    return PipelineConfig(**nested_configs, **config_dict)


def _convert_paths_to_strings(obj: Any) -> Any:
    """Recursively convert Path objects to strings for serialization."""
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _convert_paths_to_strings(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_paths_to_strings(item) for item in obj]
    else:
        return obj


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Environment variables should be prefixed with SANGERCONSENSUS_
    and use double underscores for nesting:

    SANGERCONSENSUS_CONSENSUS__MIN_READS=3
    SANGERCONSENSUS_PROCESSORS=4

    Returns
    -------
    Dict[str, Any]
        Overrides suitable for PipelineConfig.update()
    """
    prefix = "SANGERCONSENSUS_"
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            overrides[config_key] = _parse_env_value(value)

    if overrides:
        logger.debug(f"Loaded {len(overrides)} configuration overrides from environment")

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ['true', 'yes']:
        return True
    if value.lower() in ['false', 'no']:
        return False
    if value.lower() in ['none', 'null']:
        return None

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Checks for parameter combinations that are allowed but probably
    unintended.
    """
    warnings = []

    if config.consensus.accept_stop_codons and config.consensus.reading_frame != 1:
        warnings.append(
            f"reading_frame ({config.consensus.reading_frame}) has no effect "
            "while accept_stop_codons is True"
        )

    if not config.readsets.trim and config.readsets.trim_cutoff != ReadsetConfig.trim_cutoff:
        warnings.append("trim_cutoff is set but trimming is disabled")

    if config.readsets.max_secondary_peaks is None and \
            config.readsets.secondary_peak_ratio != ReadsetConfig.secondary_peak_ratio:
        warnings.append(
            "secondary_peak_ratio only affects filtering when max_secondary_peaks is set"
        )

    if config.consensus.min_information < 0.5:
        warnings.append(
            f"min_information ({config.consensus.min_information}) is low; "
            "consensus bases may be called from a single read"
        )

    cpus = os.cpu_count() or 1
    if config.processors is not None and config.processors > cpus:
        warnings.append(
            f"Processor count ({config.processors}) exceeds available CPUs ({cpus})"
        )

    return warnings
