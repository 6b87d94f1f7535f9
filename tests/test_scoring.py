import pytest

from config import CostConfig
from errors import ConfigError
from layout import Blueprint, DEFAULT_BLUEPRINT, Geometry, LayoutModel, apply_swap
from ngrams import NGramCorpus, RawNGrams
from scoring import CostEvaluator, CostWeights, evaluate


def corpus_of(letters=None, pairs=None, triples=None):
    """Corpus with the given scores taken as they are."""
    return NGramCorpus(letters or {}, pairs or {}, triples or {})


def one_row(costs, fingers=None, right_hand_start=None):
    return Geometry.from_tables([costs], [0], fingers, right_hand_start)


def keys(*chars):
    return Blueprint.from_nested([[[char] for char in chars]])


class TestLetterCost:
    def test_two_key_scenario(self, two_key_geometry, two_key_blueprint):
        corpus = NGramCorpus.from_raw([RawNGrams(1.0, {"e": 100.0, "t": 50.0})])
        layout = LayoutModel.from_blueprint(two_key_blueprint, two_key_geometry)
        assert evaluate(corpus, layout) == pytest.approx(0.6667 * 5 + 0.3333 * 9, abs=1e-3)
        assert evaluate(corpus, layout) == pytest.approx(19 / 3)

    def test_uncovered_character(self, two_key_geometry, two_key_blueprint):
        layout = LayoutModel.from_blueprint(two_key_blueprint, two_key_geometry)
        assert evaluate(corpus_of({"x": 0.5}), layout) == pytest.approx(500.0)
        weights = CostWeights(uncovered=10.0)
        assert evaluate(corpus_of({"x": 0.5}), layout, weights) == pytest.approx(5.0)

    def test_layer_cost(self):
        geometry = Geometry.from_tables([[2]], [0, 7])
        layout = LayoutModel.from_blueprint(Blueprint.from_nested([[["a", "A"]]]), geometry)
        assert evaluate(corpus_of({"A": 1.0}), layout) == pytest.approx(9.0)


class TestPairCost:
    def test_same_finger_same_hand(self):
        geometry = one_row([1, 1], {"index_left": [(0, 0), (0, 1)]}, [2])
        layout = LayoutModel.from_blueprint(keys("a", "b"), geometry)
        # key costs + same finger + same hand
        assert evaluate(corpus_of(pairs={"ab": 1.0}), layout) == pytest.approx(1 + 1 + 20 + 2)

    def test_hand_alternation(self):
        geometry = one_row([1, 1], {"index_left": [(0, 0)], "index_right": [(0, 1)]}, [1])
        layout = LayoutModel.from_blueprint(keys("a", "b"), geometry)
        assert evaluate(corpus_of(pairs={"ab": 1.0}), layout) == pytest.approx(2.0)

    def test_same_key_repeat(self):
        geometry = one_row([1, 1], {"index_left": [(0, 0), (0, 1)]}, [2])
        layout = LayoutModel.from_blueprint(keys("a", "b"), geometry)
        assert evaluate(corpus_of(pairs={"aa": 1.0}), layout) == pytest.approx(2.0)

    def test_row_jump(self):
        geometry = Geometry.from_tables([[1], [1], [1]], [0], right_hand_start=[1, 1, 1])
        layout = LayoutModel.from_blueprint(Blueprint.from_nested([[["a"]], [["b"]], [["c"]]]),
                                            geometry)
        assert evaluate(corpus_of(pairs={"ab": 1.0}), layout) == pytest.approx(2 + 2)
        assert evaluate(corpus_of(pairs={"ac": 1.0}), layout) == pytest.approx(2 + 2 + 3)

    def test_key_order_does_not_change_cost(self):
        geometry = Geometry.from_tables([[1, 2], [3, 1]], [0], {"index_left": [(0, 0), (1, 1)]},
                                        [2, 1])
        layout = LayoutModel.from_blueprint(Blueprint.from_nested([[["a"], ["b"]], [["c"], ["d"]]]),
                                            geometry)
        for pair in ("ab", "ad", "bc", "cd"):
            assert (evaluate(corpus_of(pairs={pair: 1.0}), layout)
                    == evaluate(corpus_of(pairs={pair[::-1]: 1.0}), layout))
        assert (evaluate(corpus_of(triples={"abd": 1.0}), layout)
                == evaluate(corpus_of(triples={"dba": 1.0}), layout))

    def test_uncovered_pair_has_no_penalty(self):
        geometry = one_row([1, 1], {"index_left": [(0, 0), (0, 1)]}, [2])
        layout = LayoutModel.from_blueprint(keys("a", "b"), geometry)
        assert evaluate(corpus_of(pairs={"ax": 1.0}), layout) == pytest.approx(1 + 1000)


class TestTripleCost:
    def test_same_hand_and_outer_same_finger(self):
        geometry = one_row([1, 1, 1], {"index_left": [(0, 0), (0, 2)], "middle_left": [(0, 1)]},
                           [3])
        layout = LayoutModel.from_blueprint(keys("a", "b", "c"), geometry)
        # keys + two same-hand pairs + triple same hand + triple same finger
        expected = 3 + 2 + 2 + 4 + 8
        assert evaluate(corpus_of(triples={"abc": 1.0}), layout) == pytest.approx(expected)

    def test_alternating_triple(self):
        geometry = one_row([1, 1], {"index_left": [(0, 0)], "index_right": [(0, 1)]}, [1])
        layout = LayoutModel.from_blueprint(keys("a", "b"), geometry)
        # first and third key are the same key: no outer same-finger penalty
        assert evaluate(corpus_of(triples={"aba": 1.0}), layout) == pytest.approx(3.0)


class TestWeights:
    def test_negative_weight(self):
        with pytest.raises(ConfigError):
            CostWeights(same_hand=-1.0)

    def test_same_finger_must_be_positive(self):
        with pytest.raises(ConfigError):
            CostWeights(same_finger=0.0)

    def test_from_config(self):
        weights = CostWeights.from_config(CostConfig(row_jump=7.0))
        assert weights.row_jump == 7.0
        assert weights.same_finger == 20.0


class TestEvaluator:
    def test_components_sum_to_total(self, sample_corpus):
        evaluator = CostEvaluator(sample_corpus)
        layout = LayoutModel.from_blueprint(DEFAULT_BLUEPRINT)
        components = evaluator.components(layout)
        assert components.letter_cost > 0
        assert components.pair_cost > 0
        assert components.triple_cost > 0
        assert components.total() == evaluator.evaluate(layout)

    def test_deterministic(self, sample_corpus):
        layout = LayoutModel.from_blueprint(DEFAULT_BLUEPRINT)
        first = CostEvaluator(sample_corpus).evaluate(layout)
        second = CostEvaluator(sample_corpus).evaluate(LayoutModel.from_blueprint(DEFAULT_BLUEPRINT))
        assert first == second

    def test_blueprint_matches_layout(self, sample_corpus):
        evaluator = CostEvaluator(sample_corpus)
        assert (evaluator.evaluate_blueprint(DEFAULT_BLUEPRINT)
                == evaluate(sample_corpus, LayoutModel.from_blueprint(DEFAULT_BLUEPRINT)))

    def test_swap_changes_cost(self, sample_corpus):
        evaluator = CostEvaluator(sample_corpus)
        swapped = apply_swap(DEFAULT_BLUEPRINT, "e", "q")
        assert evaluator.evaluate_blueprint(swapped) > evaluator.evaluate_blueprint(DEFAULT_BLUEPRINT)

    def test_cache(self, sample_corpus):
        evaluator = CostEvaluator(sample_corpus)
        cost = evaluator.evaluate_blueprint(DEFAULT_BLUEPRINT)
        assert evaluator._cache == {DEFAULT_BLUEPRINT: cost}
        evaluator.clear_cache()
        assert evaluator._cache == {}

    def test_cache_is_bounded(self, sample_corpus):
        evaluator = CostEvaluator(sample_corpus, max_cache_size=2)
        for other in "nrst":
            evaluator.evaluate_blueprint(apply_swap(DEFAULT_BLUEPRINT, "e", other))
        assert len(evaluator._cache) <= 2

    def test_evaluate_many_threads_match_serial(self, sample_corpus):
        blueprints = [apply_swap(DEFAULT_BLUEPRINT, "e", other) for other in "aionrst"]
        serial = CostEvaluator(sample_corpus).evaluate_many(blueprints, workers=1)
        threaded = CostEvaluator(sample_corpus).evaluate_many(blueprints, workers=4)
        assert serial == threaded
        assert serial == [CostEvaluator(sample_corpus).evaluate_blueprint(bp) for bp in blueprints]

    def test_non_negative(self, sample_corpus):
        assert CostEvaluator(sample_corpus).evaluate_blueprint(DEFAULT_BLUEPRINT) >= 0
