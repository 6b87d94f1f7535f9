# optimize_layout.py
"""
Keyboard layout evolution

Evolves keyboard layouts for a weighted ngram corpus: ngram sources are
normalized and merged, a starting layout is built from a base layout plus
a compact layer-0 override string, and one or more independent searches
(random prerandomization, annealing, controlled descent and an exhaustive
controlled tail) are run. The best layouts are written as JSON plus a
ranked CSV summary.

Usage:
    # Evolve one layout with the settings in config.yaml
    python optimize_layout.py --config config.yaml

    # Evolve 8 layouts reproducibly, in worker processes
    python optimize_layout.py --config config.yaml --num-layouts 8 --seed 42

    # Short steepest-descent run without the controlled tail
    python optimize_layout.py --steps 2000 --controlled --no-controlled-tail

    # Write a default configuration file to start from
    python optimize_layout.py --config my_config.yaml --create-config

"""

import argparse
import logging
import os
import sys
import time
from concurrent.futures import ProcessPoolExecutor
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config import (Config, create_default_config, load_config, print_config_summary,
                    validate_config)
from errors import EvolveLayoutError
from layout import (Blueprint, DEFAULT_BLUEPRINT, blueprint_to_json, format_blueprint,
                    load_blueprint, merge_layout_string)
from ngrams import NGramCorpus
from scoring import CostEvaluator, CostWeights
from search import SearchEngine, SearchResult, SearchSchedule

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------
# Setup
#-----------------------------------------------------------------------------
def setup_logging(quiet: bool = False, verbose: bool = False) -> None:
    """Quiet shows warnings only, verbose adds debug output."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                        force=True)


def build_corpus(config: Config) -> NGramCorpus:
    """Ingest and merge all ngram sources, then apply the ngram limit."""
    opt = config.optimization
    corpus = NGramCorpus.from_config(config.paths.ngrams_config, processes=opt.processes)
    logger.info("Loaded %r", corpus)
    if opt.limit_ngrams:
        corpus = corpus.limited(opt.limit_ngrams)
        logger.info("Limited to %r", corpus)
    return corpus


def build_initial_blueprint(config: Config) -> Blueprint:
    """Base layout (file or embedded default) with the starting layout merged in."""
    if config.paths.base_layout:
        base = load_blueprint(config.paths.base_layout)
    else:
        base = DEFAULT_BLUEPRINT
    blueprint = merge_layout_string(base, config.optimization.starting_layout)
    logger.debug("Initial layout:\n%s", format_blueprint(blueprint))
    return blueprint

#-----------------------------------------------------------------------------
# Evolution
#-----------------------------------------------------------------------------
def _run_single(args: Tuple) -> SearchResult:
    """One independent search; top-level so that worker processes can run it."""
    corpus, blueprint, schedule, alphabet, weights, seed_seq, run_index = args
    evaluator = CostEvaluator(corpus, weights)
    engine = SearchEngine(evaluator, alphabet, schedule, rng=np.random.default_rng(seed_seq))
    result = engine.run(blueprint)
    result.run_index = run_index
    return result


def evolve_layouts(corpus: NGramCorpus, blueprint: Blueprint, schedule: SearchSchedule,
                   n_layouts: int = 1, seed: Optional[int] = None,
                   processes: Optional[int] = None, alphabet: Sequence[str] = "",
                   weights: Optional[CostWeights] = None) -> List[SearchResult]:
    """
    Run independent searches and rank their results.

    Every run gets its own child seed spawned from one SeedSequence, so the
    results for a given seed do not depend on processes.

    Args:
        corpus: Merged ngram corpus
        blueprint: Initial layout of every run
        schedule: Search schedule shared by all runs
        n_layouts: Number of runs
        seed: Root seed (None draws fresh entropy, logged for reproduction)
        processes: Worker processes (1 = serial, None = auto)
        alphabet: Characters to swap (default: all layer-0 characters)
        weights: Cost weights (default: CostWeights())

    Returns:
        Results sorted by cost, best first
    """
    root = np.random.SeedSequence(seed)
    if seed is None:
        logger.info("Using seed entropy %d", root.entropy)
    alphabet = alphabet or blueprint.layer0_chars()

    jobs = [(corpus, blueprint, schedule, alphabet, weights, child, i)
            for i, child in enumerate(root.spawn(n_layouts))]

    if processes == 1 or len(jobs) <= 1:
        results = [_run_single(job) for job in jobs]
    else:
        with ProcessPoolExecutor(max_workers=processes) as executor:
            results = list(executor.map(_run_single, jobs))

    return sorted(results, key=lambda result: (result.cost, result.run_index))

#-----------------------------------------------------------------------------
# Output
#-----------------------------------------------------------------------------
def save_blueprint_json(blueprint: Blueprint, path: str) -> str:
    """Write a layout in the nested-array JSON format."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(blueprint_to_json(blueprint))
        f.write("\n")
    return path


def _layout_string(blueprint: Blueprint) -> str:
    return " / ".join(format_blueprint(blueprint).split("\n"))


def save_results_to_csv(results: List[SearchResult], folder: str,
                        config_path: str = "config.yaml") -> str:
    """
    Save ranked results to a CSV file.

    Args:
        results: Search results, best first
        folder: Output folder (created if needed)
        config_path: Config file the run used (part of the file name)

    Returns:
        Path to saved CSV file
    """
    os.makedirs(folder, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    config_name = os.path.splitext(os.path.basename(config_path))[0]
    output_path = os.path.join(folder, f"layout_results_{config_name}_{timestamp}.csv")

    rows = []
    for rank, result in enumerate(results, 1):
        row = {
            'rank': rank,
            'run': result.run_index,
            'cost': result.cost,
            'start_cost': result.start_cost,
            'initial_cost': result.initial_cost,
            'steps': result.steps_taken,
            'layout': _layout_string(result.blueprint),
        }
        for phase, count in result.accepted.items():
            row[f'accepted_{phase}'] = count
        rows.append(row)

    pd.DataFrame(rows).to_csv(output_path, index=False)
    return output_path


def print_results(results: List[SearchResult]) -> None:
    """Print a ranked summary of evolved layouts."""
    print(f"\nEvolved {len(results)} layout(s):")
    for rank, result in enumerate(results, 1):
        print(f"\n#{rank} (run {result.run_index}): cost {result.cost:.6f} "
              f"(start {result.start_cost:.6f}, initial {result.initial_cost:.6f}, "
              f"{result.steps_taken} steps)")
        print(format_blueprint(result.blueprint))

#-----------------------------------------------------------------------------
# Driver
#-----------------------------------------------------------------------------
def run_optimization(config: Config) -> List[SearchResult]:
    """
    Build corpus and starting layout, evolve, and save the results.

    Returns:
        Results sorted by cost, best first
    """
    opt = config.optimization
    start_time = time.time()

    corpus = build_corpus(config)
    blueprint = build_initial_blueprint(config)
    schedule = SearchSchedule.from_config(config)
    weights = CostWeights.from_config(config.cost)

    results = evolve_layouts(corpus, blueprint, schedule, n_layouts=opt.num_layouts,
                             seed=opt.seed, processes=opt.processes, alphabet=opt.alphabet,
                             weights=weights)
    logger.info("Evolution finished in %.2fs", time.time() - start_time)

    folder = config.paths.layout_results_folder
    config_name = os.path.splitext(os.path.basename(config._config_path))[0]
    for rank, result in enumerate(results, 1):
        path = save_blueprint_json(result.blueprint,
                                   os.path.join(folder, f"layout_{config_name}_{rank}.json"))
        logger.debug("Saved layout %d to %s", rank, path)
    csv_path = save_results_to_csv(results, folder, config._config_path)
    logger.info("Results saved to %s", csv_path)

    return results

#-----------------------------------------------------------------------------
# Command-line interface
#-----------------------------------------------------------------------------
def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Evolve keyboard layouts for a weighted ngram corpus.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Evolve with the settings in config.yaml
  python optimize_layout.py --config config.yaml

  # Several reproducible layouts
  python optimize_layout.py --config config.yaml --num-layouts 8 --seed 42

  # Quick steepest-descent run
  python optimize_layout.py --steps 2000 --anneal 0 --controlled
        """
    )

    # Basic options
    parser.add_argument('--config', type=str, default='config.yaml',
                        help='Path to configuration file (default: config.yaml)')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Only show warnings and errors')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Show debug output')
    parser.add_argument('--create-config', action='store_true',
                        help='Write a default configuration to --config and exit')

    # Search schedule overrides
    parser.add_argument('--steps', type=int, help='Total step budget')
    parser.add_argument('--prerandomize', type=int, help='Random swaps before the search')
    parser.add_argument('--anneal', type=int, help='Number of anneal levels')
    parser.add_argument('--anneal-step', type=int, help='Steps per anneal level')
    parser.add_argument('--controlled', action='store_true', default=None,
                        help='Steepest descent over all swaps in the controlled phase')
    parser.add_argument('--no-controlled-tail', dest='controlled_tail', action='store_false',
                        default=None, help='Skip the exhaustive controlled tail')
    parser.add_argument('--num-layouts', type=int, help='Number of layouts to evolve')
    parser.add_argument('--seed', type=int, help='Root random seed')

    # Input and output overrides
    parser.add_argument('--limit-ngrams', type=int, help='Keep only the top N ngrams per table')
    parser.add_argument('--starting-layout', type=str, help='Layer-0 override string')
    parser.add_argument('--base-layout', type=str, help='Base layout JSON file')
    parser.add_argument('--ngrams-config', type=str, help='Ngram config file')
    parser.add_argument('--output', type=str, help='Folder for evolved layouts')

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Copy command line overrides into the loaded configuration."""
    opt = config.optimization
    for name in ('steps', 'prerandomize', 'anneal', 'anneal_step', 'controlled',
                 'controlled_tail', 'num_layouts', 'seed', 'limit_ngrams', 'starting_layout'):
        value = getattr(args, name)
        if value is not None:
            setattr(opt, name, value)

    if args.base_layout is not None:
        config.paths.base_layout = args.base_layout
    if args.ngrams_config is not None:
        config.paths.ngrams_config = args.ngrams_config
    if args.output is not None:
        config.paths.layout_results_folder = args.output
    if args.quiet:
        config.logging.quiet = True
    if args.verbose:
        config.logging.verbose = True
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    args = parse_arguments(argv)
    setup_logging(args.quiet, args.verbose)

    if args.create_config:
        if os.path.exists(args.config):
            print(f"Error: {args.config} already exists", file=sys.stderr)
            return 1
        create_default_config(args.config)
        return 0

    try:
        config = apply_overrides(load_config(args.config), args)
        # Overrides are not covered by the checks in load_config
        validate_config(config)
        setup_logging(config.logging.quiet, config.logging.verbose)

        if not config.logging.quiet:
            print_config_summary(config)
        results = run_optimization(config)
    except EvolveLayoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not config.logging.quiet:
        print_results(results)
    return 0


if __name__ == "__main__":
    sys.exit(main())
