import logging
import os

import pandas as pd
import pytest
import yaml

from config import config_from_dict, load_config
from layout import DEFAULT_BLUEPRINT, load_blueprint
from optimize_layout import (apply_overrides, build_initial_blueprint, evolve_layouts, main,
                             parse_arguments, save_blueprint_json, save_results_to_csv,
                             setup_logging)
from search import SearchSchedule

ALPHABET = "aeinrstdu"
QUICK = SearchSchedule(steps=20, prerandomize=3, anneal=1, anneal_step=5, sample_size=4)


@pytest.fixture
def project(write_file, tmp_path):
    """Config, ngram config and corpus for a quick end-to-end run."""
    write_file("input/corpus.txt", "der hund und die katze sitzen in der sonne und dösen.")
    write_file("ngrams.config", "1 text input/corpus.txt\n")
    raw = {
        'paths': {'ngrams_config': str(tmp_path / "ngrams.config"),
                  'layout_results_folder': str(tmp_path / "output")},
        'optimization': {'steps': 20, 'prerandomize': 3, 'anneal': 1, 'anneal_step': 5,
                         'alphabet': ALPHABET, 'seed': 1, 'processes': 1},
        'logging': {'quiet': True},
    }
    return write_file("config.yaml", yaml.safe_dump(raw))


class TestLogging:
    @pytest.mark.parametrize("quiet, verbose, level", [
        (True, False, logging.WARNING),
        (False, True, logging.DEBUG),
        (False, False, logging.INFO),
    ])
    def test_levels(self, quiet, verbose, level):
        setup_logging(quiet, verbose)
        assert logging.getLogger().level == level


class TestArguments:
    def test_overrides(self):
        config = config_from_dict({'paths': {'ngrams_config': 'ngrams.config'}})
        args = parse_arguments(['--steps', '50', '--controlled', '--no-controlled-tail',
                                '--seed', '4', '--output', 'out', '--anneal-step', '7'])
        apply_overrides(config, args)
        assert config.optimization.steps == 50
        assert config.optimization.controlled
        assert not config.optimization.controlled_tail
        assert config.optimization.seed == 4
        assert config.optimization.anneal_step == 7
        assert config.paths.layout_results_folder == 'out'

    def test_no_overrides_keep_config(self):
        config = config_from_dict({'paths': {'ngrams_config': 'ngrams.config'},
                                   'optimization': {'controlled': True}})
        apply_overrides(config, parse_arguments([]))
        assert config.optimization.controlled
        assert config.optimization.controlled_tail
        assert config.optimization.steps == 10000


class TestInitialBlueprint:
    def test_default_base_with_starting_layout(self):
        config = config_from_dict({'paths': {'ngrams_config': 'ngrams.config'}})
        blueprint = build_initial_blueprint(config)
        assert blueprint.rows[1][1][0] == "b"
        assert blueprint.rows[2][4][0] == "e"
        assert blueprint.shape == DEFAULT_BLUEPRINT.shape

    def test_base_layout_file(self, tmp_path):
        path = save_blueprint_json(DEFAULT_BLUEPRINT, str(tmp_path / "base.json"))
        config = config_from_dict({'paths': {'ngrams_config': 'ngrams.config', 'base_layout': path},
                                   'optimization': {'starting_layout': ''}})
        assert build_initial_blueprint(config) == DEFAULT_BLUEPRINT


class TestEvolveLayouts:
    def test_sorted_and_reproducible(self, sample_corpus):
        first = evolve_layouts(sample_corpus, DEFAULT_BLUEPRINT, QUICK, n_layouts=3, seed=5,
                               processes=1, alphabet=ALPHABET)
        second = evolve_layouts(sample_corpus, DEFAULT_BLUEPRINT, QUICK, n_layouts=3, seed=5,
                                processes=1, alphabet=ALPHABET)
        assert [r.cost for r in first] == sorted(r.cost for r in first)
        assert [r.blueprint for r in first] == [r.blueprint for r in second]
        assert sorted(r.run_index for r in first) == [0, 1, 2]

    def test_processes_match_serial(self, sample_corpus):
        serial = evolve_layouts(sample_corpus, DEFAULT_BLUEPRINT, QUICK, n_layouts=2, seed=8,
                                processes=1, alphabet=ALPHABET)
        parallel = evolve_layouts(sample_corpus, DEFAULT_BLUEPRINT, QUICK, n_layouts=2, seed=8,
                                  processes=2, alphabet=ALPHABET)
        assert [r.cost for r in serial] == [r.cost for r in parallel]


class TestOutputs:
    def test_blueprint_json(self, tmp_path):
        path = save_blueprint_json(DEFAULT_BLUEPRINT, str(tmp_path / "nested" / "layout.json"))
        assert load_blueprint(path) == DEFAULT_BLUEPRINT

    def test_results_csv(self, sample_corpus, tmp_path):
        results = evolve_layouts(sample_corpus, DEFAULT_BLUEPRINT, QUICK, n_layouts=2, seed=1,
                                 processes=1, alphabet=ALPHABET)
        path = save_results_to_csv(results, str(tmp_path / "results"), "my_config.yaml")
        assert os.path.basename(path).startswith("layout_results_my_config_")
        df = pd.read_csv(path)
        assert list(df['rank']) == [1, 2]
        assert df['cost'].iloc[0] <= df['cost'].iloc[1]
        assert 'accepted_anneal' in df.columns


class TestMain:
    def test_end_to_end(self, project, tmp_path):
        assert main(['--config', str(project)]) == 0
        output = tmp_path / "output"
        assert (output / "layout_config_1.json").exists()
        assert any(name.endswith(".csv") for name in os.listdir(output))

    def test_create_config(self, tmp_path):
        path = tmp_path / "new_config.yaml"
        assert main(['--config', str(path), '--create-config']) == 0
        config = load_config(str(path))
        assert config.paths.ngrams_config == str(tmp_path / "ngrams.config")
        assert config.optimization.steps == 10000

    def test_create_config_keeps_existing_file(self, project, capsys):
        before = project.read_text(encoding="utf-8")
        assert main(['--config', str(project), '--create-config']) == 1
        assert project.read_text(encoding="utf-8") == before
        assert "already exists" in capsys.readouterr().err

    def test_missing_config(self, tmp_path, capsys):
        assert main(['--config', str(tmp_path / "missing.yaml")]) == 1
        assert "Error" in capsys.readouterr().err

    def test_invalid_override(self, project, capsys):
        assert main(['--config', str(project), '--steps', '0']) == 1
        assert "steps" in capsys.readouterr().err
