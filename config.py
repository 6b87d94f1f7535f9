#!/usr/bin/env python3
"""
Configuration Management for Keyboard Layout Evolution

This module provides structured configuration loading, validation,
and management for evolving keyboard layouts. It handles the ngram
source file, the base layout, the search schedule and the ergonomic
cost weights.

Features:
- YAML-based configuration with comprehensive validation
- Defaults for every optional section
- Clear error messages for configuration issues

"""

import yaml
import os
from typing import Optional
from dataclasses import dataclass, field, fields, asdict

from errors import ConfigError

DEFAULT_ALPHABET = "abcdefghijklmnopqrstuvwxyzäöüß"
DEFAULT_STARTING_LAYOUT = "bmuaz kdflvjß\ncriey ptsnh⇘\n⇚xäüoö wg,.q"


@dataclass
class PathConfig:
    """File paths for input and output."""
    ngrams_config: str
    base_layout: Optional[str] = None
    layout_results_folder: str = "output/layouts"


@dataclass
class OptimizationConfig:
    """Search schedule and starting point."""

    # Number of independent layouts to evolve
    num_layouts: int = 1

    # Step budget and phases
    steps: int = 10000
    prerandomize: int = 3000
    anneal: int = 5
    anneal_step: int = 1000
    controlled: bool = False
    controlled_tail: bool = True

    # Corpus and layout
    limit_ngrams: int = 0
    starting_layout: str = DEFAULT_STARTING_LAYOUT
    alphabet: str = DEFAULT_ALPHABET

    # Randomness and tuning
    seed: Optional[int] = None
    sample_size: int = 8
    initial_temperature: float = 0.05

    # Parallelism (processes for corpus ingestion and runs, threads within a step)
    processes: Optional[int] = None
    workers: int = 1


@dataclass
class CostConfig:
    """Ergonomic penalty weights, see scoring.CostWeights."""
    same_finger: float = 20.0
    same_hand: float = 2.0
    row_jump: float = 3.0
    triple_same_hand: float = 4.0
    triple_same_finger: float = 8.0
    uncovered: float = 1000.0


@dataclass
class LoggingConfig:
    """Verbosity settings."""
    quiet: bool = False
    verbose: bool = False
    show_progress: bool = False


@dataclass
class Config:
    """Complete configuration container."""
    paths: PathConfig
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    cost: CostConfig = field(default_factory=CostConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Internal tracking
    _config_path: str = "config.yaml"


def _build_section(cls, raw, name: str):
    """Instantiate one dataclass section, rejecting unknown keys."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Section '{name}' must be a mapping, got {type(raw).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in section '{name}': {unknown}")
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigError(f"Error parsing {name} configuration: {e}")


def config_from_dict(raw_config: dict, config_path: str = "config.yaml") -> Config:
    """
    Build and validate a Config from an already-parsed mapping.

    Args:
        raw_config: Mapping with the sections described in config.yaml
        config_path: Where the mapping came from (for messages and output names)

    Returns:
        Validated Config object

    Raises:
        ConfigError: If a section is missing or invalid
    """
    if not raw_config:
        raise ConfigError("Configuration file is empty")
    if 'paths' not in raw_config:
        raise ConfigError("Missing required configuration sections: ['paths']")

    known_sections = {'paths', 'optimization', 'cost', 'logging'}
    unknown_sections = sorted(set(raw_config) - known_sections)
    if unknown_sections:
        raise ConfigError(f"Unknown configuration sections: {unknown_sections}")

    config = Config(
        paths=_build_section(PathConfig, raw_config['paths'], 'paths'),
        optimization=_build_section(OptimizationConfig, raw_config.get('optimization'), 'optimization'),
        cost=_build_section(CostConfig, raw_config.get('cost'), 'cost'),
        logging=_build_section(LoggingConfig, raw_config.get('logging'), 'logging'),
        _config_path=config_path,
    )

    validate_config(config)
    return config


def load_config(config_path: str = "config.yaml") -> Config:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Validated Config object with all settings

    Raises:
        ConfigError: If the file doesn't exist, can't be parsed or is invalid
    """
    if not os.path.exists(config_path):
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Unable to read configuration file {config_path}: {e}")

    if raw_config is not None and not isinstance(raw_config, dict):
        raise ConfigError("Configuration file must contain a mapping of sections")

    config = config_from_dict(raw_config, config_path)

    # Input paths in the file are relative to the file itself
    config_dir = os.path.dirname(os.path.abspath(config_path))
    config.paths.ngrams_config = _resolve_path(config_dir, config.paths.ngrams_config)
    if config.paths.base_layout:
        config.paths.base_layout = _resolve_path(config_dir, config.paths.base_layout)
    return config


def _resolve_path(base_dir: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(base_dir, path)


def validate_config(config: Config) -> None:
    """
    Perform comprehensive validation of configuration.

    Args:
        config: Configuration object to validate

    Raises:
        ConfigError: If any validation check fails
    """
    opt = config.optimization

    if not config.paths.ngrams_config:
        raise ConfigError("paths.ngrams_config cannot be empty")

    # Counts
    if opt.steps < 1:
        raise ConfigError("steps must be at least 1")
    if opt.num_layouts < 1:
        raise ConfigError("num_layouts must be at least 1")
    for name in ('prerandomize', 'anneal', 'anneal_step', 'limit_ngrams'):
        if getattr(opt, name) < 0:
            raise ConfigError(f"{name} cannot be negative")
    if opt.sample_size < 1:
        raise ConfigError("sample_size must be at least 1")
    if opt.workers < 1:
        raise ConfigError("workers must be at least 1")
    if opt.processes is not None and opt.processes < 1:
        raise ConfigError("processes must be at least 1")
    if opt.seed is not None and opt.seed < 0:
        raise ConfigError("seed cannot be negative")
    if opt.initial_temperature <= 0:
        raise ConfigError("initial_temperature must be positive")

    # Alphabet
    if len(opt.alphabet) < 2:
        raise ConfigError("Need at least 2 characters in alphabet for meaningful optimization")
    if len(set(opt.alphabet)) != len(opt.alphabet):
        duplicates = sorted(char for char in set(opt.alphabet) if opt.alphabet.count(char) > 1)
        raise ConfigError(f"Duplicate characters in alphabet: '{opt.alphabet}' (duplicates: {duplicates})")

    # Cost weights
    for name, value in asdict(config.cost).items():
        if value < 0:
            raise ConfigError(f"cost.{name} cannot be negative (got {value})")
    if config.cost.same_finger == 0:
        raise ConfigError("cost.same_finger must be positive")


def print_config_summary(config: Config) -> None:
    """Print human-readable configuration summary."""
    opt = config.optimization

    print(f"\nConfiguration Summary:")
    print(f"  Config file: {config._config_path}")
    print(f"  Ngram sources: {config.paths.ngrams_config}")
    print(f"  Base layout: {config.paths.base_layout or 'embedded default'}")
    print(f"  Alphabet ({len(opt.alphabet)}): {opt.alphabet}")
    print(f"  Layouts to evolve: {opt.num_layouts}")
    print(f"  Steps: {opt.steps}, prerandomize: {opt.prerandomize}, "
          f"anneal: {opt.anneal} x {opt.anneal_step}")
    print(f"  Controlled: {opt.controlled}, controlled tail: {opt.controlled_tail}")
    if opt.limit_ngrams:
        print(f"  Ngram limit: {opt.limit_ngrams}")
    if opt.seed is not None:
        print(f"  Seed: {opt.seed}")


def create_default_config(output_path: str = "config.yaml") -> None:
    """
    Create a default configuration file with common settings.

    Args:
        output_path: Path where to save the default config
    """
    default_config = {
        'paths': asdict(PathConfig(ngrams_config='ngrams.config')),
        'optimization': asdict(OptimizationConfig()),
        'cost': asdict(CostConfig()),
        'logging': asdict(LoggingConfig()),
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(default_config, f, default_flow_style=False, indent=2, allow_unicode=True)

    print(f"Default configuration saved to: {output_path}")
