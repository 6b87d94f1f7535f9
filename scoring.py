# scoring.py
"""
Typing cost of a keyboard layout for an ngram corpus.

The cost is the expected effort per unit of typed text:

    sum over letters  freq * key_cost(c)
  + sum over pairs    freq * (key_cost(a) + key_cost(b) + pair penalties)
  + sum over triples  freq * (key costs + pair penalties of ab and bc
                              + triple penalties)

where key_cost is the position cost plus the layer cost of a character's
key. Penalties (see CostWeights) apply to keys on the same hand, the same
finger on different keys, and row jumps within one hand. Characters
without a key cost a large constant instead of failing.

Note: The corpus is turned into index arrays once per evaluator, in
sorted ngram order, and every layout is summed by the same compiled
kernel in that order. Equal layouts therefore always get bit-identical
costs.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from numba import jit

from errors import ConfigError
from layout import Blueprint, Geometry, LayoutModel, DEFAULT_GEOMETRY, UNASSIGNED_FINGER
from ngrams import NGramCorpus

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_SIZE = 200_000

#-----------------------------------------------------------------------------
# Penalty weights
#-----------------------------------------------------------------------------
@dataclass(frozen=True)
class CostWeights:
    """Tunable ergonomic model."""
    same_finger: float = 20.0         # pair on one finger, different keys
    same_hand: float = 2.0            # pair without hand alternation
    row_jump: float = 3.0             # per row beyond the first, same hand
    triple_same_hand: float = 4.0     # three keys on one hand
    triple_same_finger: float = 8.0   # first and third key on one finger
    uncovered: float = 1000.0         # character without a key

    def __post_init__(self):
        for name, value in asdict(self).items():
            if not value >= 0:
                raise ConfigError(f"Cost weight {name} must be non-negative (got {value})")
        if self.same_finger <= 0:
            raise ConfigError("Cost weight same_finger must be positive")

    @classmethod
    def from_config(cls, cost_config) -> "CostWeights":
        return cls(**asdict(cost_config))

    def as_array(self) -> np.ndarray:
        return np.array([self.same_finger, self.same_hand, self.row_jump,
                         self.triple_same_hand, self.triple_same_finger, self.uncovered],
                        dtype=np.float64)

#-----------------------------------------------------------------------------
# JIT-compiled core calculations
#-----------------------------------------------------------------------------
@jit(nopython=True, nogil=True)
def _char_cost_jit(c, key_cost, covered, uncovered):
    if covered[c]:
        return key_cost[c]
    return uncovered


@jit(nopython=True, nogil=True)
def _pair_penalty_jit(a, b, finger, row, key_id, left, covered, weights):
    """Penalty of typing key b right after key a."""
    if not (covered[a] and covered[b]) or key_id[a] == key_id[b]:
        return 0.0

    penalty = 0.0
    if finger[a] != -1 and finger[a] == finger[b]:
        penalty += weights[0]
    if left[a] == left[b]:
        penalty += weights[1]
        jump = abs(row[a] - row[b])
        if jump >= 2:
            penalty += weights[2] * (jump - 1)
    return penalty


@jit(nopython=True, nogil=True)
def _triple_penalty_jit(a, b, c, finger, key_id, left, covered, weights):
    if not (covered[a] and covered[b] and covered[c]):
        return 0.0

    penalty = 0.0
    if left[a] == left[b] and left[b] == left[c]:
        penalty += weights[3]
    if finger[a] != -1 and finger[a] == finger[c] and key_id[a] != key_id[c]:
        penalty += weights[4]
    return penalty


@jit(nopython=True, nogil=True)
def _layout_cost_jit(letter_idx, letter_freq, pair_idx, pair_freq, triple_idx, triple_freq,
                     key_cost, finger, row, key_id, left, covered, weights):
    """
    JIT-compiled cost calculation.

    Returns:
        (letter_cost, pair_cost, triple_cost)
    """
    uncovered = weights[5]

    letter_cost = 0.0
    for n in range(letter_idx.shape[0]):
        letter_cost += letter_freq[n] * _char_cost_jit(letter_idx[n], key_cost, covered, uncovered)

    pair_cost = 0.0
    for n in range(pair_idx.shape[0]):
        a = pair_idx[n, 0]
        b = pair_idx[n, 1]
        cost = (_char_cost_jit(a, key_cost, covered, uncovered)
                + _char_cost_jit(b, key_cost, covered, uncovered)
                + _pair_penalty_jit(a, b, finger, row, key_id, left, covered, weights))
        pair_cost += pair_freq[n] * cost

    triple_cost = 0.0
    for n in range(triple_idx.shape[0]):
        a = triple_idx[n, 0]
        b = triple_idx[n, 1]
        c = triple_idx[n, 2]
        cost = (_char_cost_jit(a, key_cost, covered, uncovered)
                + _char_cost_jit(b, key_cost, covered, uncovered)
                + _char_cost_jit(c, key_cost, covered, uncovered)
                + _pair_penalty_jit(a, b, finger, row, key_id, left, covered, weights)
                + _pair_penalty_jit(b, c, finger, row, key_id, left, covered, weights)
                + _triple_penalty_jit(a, b, c, finger, key_id, left, covered, weights))
        triple_cost += triple_freq[n] * cost

    return letter_cost, pair_cost, triple_cost

#-----------------------------------------------------------------------------
# Core data structures
#-----------------------------------------------------------------------------
@dataclass
class CostComponents:
    """Cost split by ngram category."""
    letter_cost: float
    pair_cost: float
    triple_cost: float

    def total(self) -> float:
        return self.letter_cost + self.pair_cost + self.triple_cost


class CorpusArrays:
    """
    Index arrays of a corpus, in sorted ngram order.

    Characters are numbered by their rank in the sorted character set.
    """

    def __init__(self, corpus: NGramCorpus):
        self.chars = corpus.characters()
        index = {char: i for i, char in enumerate(self.chars)}

        def as_arrays(table, length):
            idx = np.array([[index[c] for c in ngram] for ngram in table],
                           dtype=np.int64).reshape(-1, length)
            freq = np.array(list(table.values()), dtype=np.float64)
            return idx, freq

        letter_idx, self.letter_freq = as_arrays(corpus.letters, 1)
        self.letter_idx = letter_idx[:, 0].copy()
        self.pair_idx, self.pair_freq = as_arrays(corpus.pairs, 2)
        self.triple_idx, self.triple_freq = as_arrays(corpus.triples, 3)

    @property
    def n_chars(self) -> int:
        return len(self.chars)

#-----------------------------------------------------------------------------
# Evaluator
#-----------------------------------------------------------------------------
class CostEvaluator:
    """
    Fitness oracle for the layout search.

    Holds a read-only corpus and caches costs per Blueprint.
    """

    def __init__(self, corpus: NGramCorpus, weights: Optional[CostWeights] = None,
                 geometry: Geometry = DEFAULT_GEOMETRY,
                 max_cache_size: int = DEFAULT_MAX_CACHE_SIZE):
        self.corpus = corpus
        self.weights = weights or CostWeights()
        self.geometry = geometry
        self.arrays = CorpusArrays(corpus)
        self._weights_array = self.weights.as_array()
        self._cache: Dict[Blueprint, float] = {}
        self._max_cache_size = max_cache_size
        logger.debug("Cost arrays: %d characters, %d letters, %d pairs, %d triples",
                     self.arrays.n_chars, len(self.arrays.letter_idx), len(self.arrays.pair_idx),
                     len(self.arrays.triple_idx))

    def _layout_arrays(self, layout: LayoutModel) -> Tuple[np.ndarray, ...]:
        """Per-character lookups of one layout, aligned with the corpus indexes."""
        n = self.arrays.n_chars
        key_cost = np.zeros(n, dtype=np.float64)
        finger = np.full(n, UNASSIGNED_FINGER, dtype=np.int64)
        row = np.zeros(n, dtype=np.int64)
        key_id = np.full(n, -1, dtype=np.int64)
        left = np.zeros(n, dtype=np.bool_)
        covered = np.zeros(n, dtype=np.bool_)

        geometry = layout.geometry
        n_slots = max(geometry.position_costs.shape[1], 1)
        for i, char in enumerate(self.arrays.chars):
            pos = layout.char_pos.get(char)
            if pos is None:
                continue
            covered[i] = True
            key_cost[i] = geometry.key_cost(pos)
            finger[i] = layout.char_finger[char]
            row[i] = pos.row
            key_id[i] = pos.row * n_slots + pos.slot
            left[i] = layout.pos_is_left[pos]

        return key_cost, finger, row, key_id, left, covered

    def components(self, layout: LayoutModel) -> CostComponents:
        """Letter, pair and triple cost of a layout."""
        a = self.arrays
        letter_cost, pair_cost, triple_cost = _layout_cost_jit(
            a.letter_idx, a.letter_freq, a.pair_idx, a.pair_freq, a.triple_idx, a.triple_freq,
            *self._layout_arrays(layout), self._weights_array)
        return CostComponents(letter_cost, pair_cost, triple_cost)

    def evaluate(self, layout: LayoutModel) -> float:
        """Total cost of a layout; lower is better, never negative."""
        return self.components(layout).total()

    def _evaluate_uncached(self, blueprint: Blueprint) -> float:
        return self.evaluate(LayoutModel.from_blueprint(blueprint, self.geometry))

    def evaluate_blueprint(self, blueprint: Blueprint) -> float:
        """Cached total cost of a blueprint on this evaluator's geometry."""
        cost = self._cache.get(blueprint)
        if cost is None:
            cost = self._evaluate_uncached(blueprint)
            self._store(blueprint, cost)
        return cost

    def evaluate_many(self, blueprints: Sequence[Blueprint], workers: int = 1) -> List[float]:
        """
        Costs of several blueprints, in input order.

        With workers > 1 uncached blueprints are scored on a thread pool;
        the cache is only written from the calling thread.
        """
        costs = [self._cache.get(bp) for bp in blueprints]
        missing = [i for i, cost in enumerate(costs) if cost is None]

        if workers > 1 and len(missing) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                computed = list(executor.map(self._evaluate_uncached,
                                             [blueprints[i] for i in missing]))
        else:
            computed = [self._evaluate_uncached(blueprints[i]) for i in missing]

        for i, cost in zip(missing, computed):
            costs[i] = cost
            self._store(blueprints[i], cost)
        return costs

    def _store(self, blueprint: Blueprint, cost: float) -> None:
        if len(self._cache) >= self._max_cache_size:
            self._cache.clear()
        self._cache[blueprint] = cost

    def clear_cache(self):
        """Clear cost cache to free memory."""
        self._cache.clear()


def evaluate(corpus: NGramCorpus, layout: LayoutModel,
             weights: Optional[CostWeights] = None) -> float:
    """One-shot cost of a layout on its own geometry."""
    return CostEvaluator(corpus, weights, layout.geometry).evaluate(layout)
