# search.py
"""
Stochastic local search over keyboard layouts.

One run walks through four phases:
1. Prerandomize: blind random swaps to leave the starting layout's basin
2. Anneal: multi-swap candidates with level-keyed acceptance
3. Controlled: single swaps, strictly improving only
4. Controlled tail: exhaustive single-swap passes until none improves

Only layer-0 characters of the configured alphabet are swapped. Steps of
the Anneal and Controlled phases share one step budget; Anneal never gets
more than half of it (see balance_anneal_budget).
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial
from itertools import combinations
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
from tqdm import tqdm

from errors import ConfigError
from layout import Blueprint, LayoutModel, apply_swap, format_blueprint
from scoring import CostEvaluator

logger = logging.getLogger(__name__)

# (delta, current_cost, level, depth) -> probability of accepting a worse candidate
AcceptanceSchedule = Callable[[float, float, int, int], float]

#-----------------------------------------------------------------------------
# Schedule
#-----------------------------------------------------------------------------
class Phase(Enum):
    PRERANDOMIZE = "prerandomize"
    ANNEAL = "anneal"
    CONTROLLED = "controlled"
    CONTROLLED_TAIL = "controlled_tail"
    DONE = "done"


@dataclass(frozen=True)
class SearchSchedule:
    """Step budget and tuning of one search run."""
    steps: int = 10000
    prerandomize: int = 3000
    anneal: int = 5
    anneal_step: int = 1000
    controlled: bool = False
    controlled_tail: bool = True
    sample_size: int = 8
    initial_temperature: float = 0.05
    workers: int = 1
    show_progress: bool = False

    def __post_init__(self):
        if self.steps < 1:
            raise ConfigError("steps must be at least 1")
        for name in ("prerandomize", "anneal", "anneal_step"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} cannot be negative")
        if self.sample_size < 1 or self.workers < 1:
            raise ConfigError("sample_size and workers must be at least 1")
        if self.initial_temperature <= 0:
            raise ConfigError("initial_temperature must be positive")

    @classmethod
    def from_config(cls, config) -> "SearchSchedule":
        """Build from a loaded Config (optimization and logging sections)."""
        opt = config.optimization
        return cls(steps=opt.steps, prerandomize=opt.prerandomize, anneal=opt.anneal,
                   anneal_step=opt.anneal_step, controlled=opt.controlled,
                   controlled_tail=opt.controlled_tail, sample_size=opt.sample_size,
                   initial_temperature=opt.initial_temperature, workers=opt.workers,
                   show_progress=config.logging.show_progress)

    @property
    def anneal_steps(self) -> int:
        return self.anneal * self.anneal_step


def balance_anneal_budget(schedule: SearchSchedule) -> SearchSchedule:
    """
    Cap the Anneal phase at half of the step budget.

    If anneal * anneal_step exceeds steps // 2, anneal_step is lowered to
    max(1, (steps // 2) // anneal); otherwise the schedule is returned as is.
    """
    half = schedule.steps // 2
    if schedule.anneal == 0 or schedule.anneal_steps <= half:
        return schedule

    anneal_step = max(1, half // schedule.anneal)
    logger.info("Anneal budget %d x %d exceeds half of %d steps, using %d steps per level",
                schedule.anneal, schedule.anneal_step, schedule.steps, anneal_step)
    return replace(schedule, anneal_step=anneal_step)

#-----------------------------------------------------------------------------
# Acceptance schedules
#-----------------------------------------------------------------------------
def exponential_acceptance(delta: float, current_cost: float, level: int, depth: int,
                           initial_temperature: float = 0.05) -> float:
    """
    Metropolis-style acceptance keyed to the anneal level.

    p = exp(-(delta / current_cost) / T) with T = initial_temperature * level / depth.
    The relative delta keeps the curve independent of the corpus scale; the
    probability shrinks as the level goes down.
    """
    if delta <= 0:
        return 1.0
    if current_cost <= 0 or level <= 0 or depth <= 0:
        return 0.0
    temperature = initial_temperature * level / depth
    return math.exp(-(delta / current_cost) / temperature)


def greedy_acceptance(delta: float, current_cost: float, level: int, depth: int) -> float:
    """Never accept a worse candidate."""
    return 1.0 if delta < 0 else 0.0

#-----------------------------------------------------------------------------
# State and result
#-----------------------------------------------------------------------------
@dataclass
class SearchState:
    """Mutable state of one run, owned by the SearchEngine."""
    current: Blueprint
    current_cost: float
    best: Blueprint
    best_cost: float
    rng: np.random.Generator
    phase: Phase = Phase.PRERANDOMIZE
    steps_taken: int = 0
    level: int = 0
    accepted: Dict[Phase, int] = field(default_factory=dict)
    phases: List[Phase] = field(default_factory=list)

    def enter(self, phase: Phase) -> None:
        logger.debug("Entering phase %s after %d steps (cost %.6f)",
                     phase.value, self.steps_taken, self.current_cost)
        self.phase = phase
        self.phases.append(phase)
        self.accepted.setdefault(phase, 0)

    def accept(self, blueprint: Blueprint, cost: float) -> None:
        self.current = blueprint
        self.current_cost = cost
        self.accepted[self.phase] = self.accepted.get(self.phase, 0) + 1
        if cost < self.best_cost:
            self.best = blueprint
            self.best_cost = cost

    def reset_to_best(self) -> None:
        self.current = self.best
        self.current_cost = self.best_cost


@dataclass
class SearchResult:
    """Best layout of one run and how the run got there."""
    blueprint: Blueprint
    cost: float
    layout: LayoutModel
    initial_cost: float
    start_cost: float
    steps_taken: int
    accepted: Dict[str, int]
    phases: List[str]
    run_index: int = 0

    @property
    def improvement(self) -> float:
        return self.start_cost - self.cost

#-----------------------------------------------------------------------------
# Engine
#-----------------------------------------------------------------------------
class SearchEngine:
    """
    Drives one layout search from an initial Blueprint to a local optimum.

    The engine is sequential: every accept/reject decision depends on the
    previously accepted state. Candidate batches may be scored on threads
    (schedule.workers), but selection happens here only.
    """

    def __init__(self, evaluator: CostEvaluator, alphabet: Sequence[str],
                 schedule: Optional[SearchSchedule] = None,
                 rng: Union[np.random.Generator, int, None] = None,
                 acceptance: Optional[AcceptanceSchedule] = None):
        self.evaluator = evaluator
        self.alphabet = list(dict.fromkeys(alphabet))
        self.schedule = balance_anneal_budget(schedule or SearchSchedule())
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)
        self.acceptance = acceptance or partial(
            exponential_acceptance, initial_temperature=self.schedule.initial_temperature)

    #-------------------------------------------------------------------------
    # Moves
    #-------------------------------------------------------------------------
    def _swappable(self, blueprint: Blueprint) -> List[str]:
        on_layer0 = set(blueprint.layer0_chars())
        missing = [char for char in self.alphabet if char not in on_layer0]
        if missing:
            logger.warning("Characters not on layer 0 of the layout, not swapped: %s",
                           "".join(missing))
        return [char for char in self.alphabet if char in on_layer0]

    def _random_swap(self, blueprint: Blueprint, chars: List[str]) -> Blueprint:
        i, j = self.rng.choice(len(chars), size=2, replace=False)
        return apply_swap(blueprint, chars[i], chars[j])

    def _random_swaps(self, blueprint: Blueprint, chars: List[str], n_swaps: int) -> Blueprint:
        for _ in range(n_swaps):
            blueprint = self._random_swap(blueprint, chars)
        return blueprint

    #-------------------------------------------------------------------------
    # Phases
    #-------------------------------------------------------------------------
    def _anneal(self, state: SearchState, chars: List[str], pbar) -> None:
        depth = self.schedule.anneal
        for level in range(depth, 0, -1):
            state.level = level
            for _ in range(self.schedule.anneal_step):
                candidate = self._random_swaps(state.current, chars, level + 1)
                cost = self.evaluator.evaluate_blueprint(candidate)
                delta = cost - state.current_cost
                if delta < 0:
                    state.accept(candidate, cost)
                elif self.rng.random() < self.acceptance(delta, state.current_cost, level, depth):
                    state.accept(candidate, cost)
                state.steps_taken += 1
                pbar.update(1)
            logger.debug("Anneal level %d done, cost %.6f, best %.6f",
                         level, state.current_cost, state.best_cost)

    def _all_swaps(self, blueprint: Blueprint, chars: List[str]) -> List[Blueprint]:
        return [apply_swap(blueprint, a, b) for a, b in combinations(chars, 2)]

    def _controlled(self, state: SearchState, chars: List[str], pbar) -> None:
        state.level = 0
        remaining = self.schedule.steps - state.steps_taken
        for _ in range(remaining):
            if self.schedule.controlled:
                candidates = self._all_swaps(state.current, chars)
            else:
                candidates = [self._random_swap(state.current, chars)
                              for _ in range(self.schedule.sample_size)]

            costs = self.evaluator.evaluate_many(candidates, self.schedule.workers)
            best_idx = int(np.argmin(costs))
            state.steps_taken += 1
            pbar.update(1)

            if costs[best_idx] < state.current_cost:
                state.accept(candidates[best_idx], costs[best_idx])
            elif self.schedule.controlled:
                logger.debug("No improving swap left after %d steps", state.steps_taken)
                break

    def _controlled_tail(self, state: SearchState, chars: List[str]) -> None:
        passes = 0
        while True:
            passes += 1
            improved = False
            for a, b in combinations(chars, 2):
                candidate = apply_swap(state.current, a, b)
                cost = self.evaluator.evaluate_blueprint(candidate)
                if cost < state.current_cost:
                    state.accept(candidate, cost)
                    improved = True
            if not improved:
                break
        logger.debug("Controlled tail finished after %d passes", passes)

    #-------------------------------------------------------------------------
    # Run
    #-------------------------------------------------------------------------
    def run(self, initial: Blueprint) -> SearchResult:
        """
        Search from an initial Blueprint.

        Args:
            initial: Starting layout; never modified

        Returns:
            SearchResult with the best Blueprint found
        """
        schedule = self.schedule
        chars = self._swappable(initial)
        initial_cost = self.evaluator.evaluate_blueprint(initial)

        state = SearchState(initial, initial_cost, initial, initial_cost, self.rng)
        if len(chars) < 2:
            logger.warning("Fewer than two swappable characters, returning the initial layout")
            return self._result(state, initial_cost, initial_cost)

        state.enter(Phase.PRERANDOMIZE)
        start = self._random_swaps(initial, chars, schedule.prerandomize)
        start_cost = self.evaluator.evaluate_blueprint(start)
        state.current = state.best = start
        state.current_cost = state.best_cost = start_cost
        logger.debug("Start layout (cost %.6f):\n%s", start_cost, format_blueprint(start))

        with tqdm(total=schedule.steps, desc="Evolving", unit=" steps",
                  disable=not schedule.show_progress) as pbar:
            if schedule.anneal_steps > 0:
                state.enter(Phase.ANNEAL)
                self._anneal(state, chars, pbar)
                state.reset_to_best()

            state.enter(Phase.CONTROLLED)
            self._controlled(state, chars, pbar)

        if schedule.controlled_tail:
            state.enter(Phase.CONTROLLED_TAIL)
            self._controlled_tail(state, chars)

        state.enter(Phase.DONE)
        logger.info("Search finished: cost %.6f -> %.6f in %d steps",
                    start_cost, state.best_cost, state.steps_taken)
        return self._result(state, initial_cost, start_cost)

    def _result(self, state: SearchState, initial_cost: float, start_cost: float) -> SearchResult:
        return SearchResult(
            blueprint=state.best,
            cost=state.best_cost,
            layout=LayoutModel.from_blueprint(state.best, self.evaluator.geometry),
            initial_cost=initial_cost,
            start_cost=start_cost,
            steps_taken=state.steps_taken,
            accepted={phase.value: count for phase, count in state.accepted.items()
                      if phase is not Phase.DONE},
            phases=[phase.value for phase in state.phases],
        )
