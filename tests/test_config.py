import pytest
import yaml

from config import (DEFAULT_ALPHABET, Config, config_from_dict, create_default_config,
                    load_config, validate_config)
from errors import ConfigError


def minimal(**sections):
    raw = {'paths': {'ngrams_config': 'ngrams.config'}}
    raw.update(sections)
    return raw


class TestLoadConfig:
    def test_defaults(self, write_file):
        path = write_file("config.yaml", yaml.safe_dump(minimal()))
        config = load_config(str(path))
        assert isinstance(config, Config)
        assert config.optimization.steps == 10000
        assert config.optimization.alphabet == DEFAULT_ALPHABET
        assert config.cost.same_finger == 20.0
        assert config.paths.base_layout is None
        assert config._config_path == str(path)

    def test_overrides(self, write_file):
        raw = minimal(optimization={'steps': 500, 'controlled': True, 'seed': 3},
                      cost={'row_jump': 1.5}, logging={'quiet': True})
        config = load_config(str(write_file("config.yaml", yaml.safe_dump(raw))))
        assert config.optimization.steps == 500
        assert config.optimization.controlled
        assert config.optimization.seed == 3
        assert config.cost.row_jump == 1.5
        assert config.logging.quiet

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, write_file):
        with pytest.raises(ConfigError):
            load_config(str(write_file("config.yaml", "paths: [unclosed\n")))

    def test_not_a_mapping(self, write_file):
        with pytest.raises(ConfigError):
            load_config(str(write_file("config.yaml", "- just\n- a list\n")))

    def test_empty_file(self, write_file):
        with pytest.raises(ConfigError):
            load_config(str(write_file("config.yaml", "")))

    def test_default_config_round_trip(self, tmp_path):
        path = tmp_path / "default.yaml"
        create_default_config(str(path))
        config = load_config(str(path))
        assert config.paths.ngrams_config == str(tmp_path / 'ngrams.config')
        assert config.optimization.anneal == 5

    def test_paths_relative_to_config_file(self, write_file, tmp_path, monkeypatch):
        raw = {'paths': {'ngrams_config': 'data/ngrams.config', 'base_layout': 'base.json',
                         'layout_results_folder': 'out'}}
        path = write_file("project/config.yaml", yaml.safe_dump(raw))
        monkeypatch.chdir(tmp_path)
        config = load_config(str(path))
        assert config.paths.ngrams_config == str(tmp_path / 'project' / 'data' / 'ngrams.config')
        assert config.paths.base_layout == str(tmp_path / 'project' / 'base.json')
        assert config.paths.layout_results_folder == 'out'

    def test_absolute_paths_are_kept(self, write_file, tmp_path):
        target = str(tmp_path / "elsewhere" / "ngrams.config")
        path = write_file("config.yaml", yaml.safe_dump({'paths': {'ngrams_config': target}}))
        assert load_config(str(path)).paths.ngrams_config == target


class TestValidation:
    def test_missing_paths_section(self):
        with pytest.raises(ConfigError, match="paths"):
            config_from_dict({'optimization': {}})

    def test_unknown_section(self):
        with pytest.raises(ConfigError, match="Unknown configuration sections"):
            config_from_dict(minimal(plots={}))

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="Unknown keys"):
            config_from_dict(minimal(optimization={'stepz': 10}))

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            config_from_dict(minimal(cost=[1, 2]))

    @pytest.mark.parametrize("section", [
        {'steps': 0},
        {'num_layouts': 0},
        {'prerandomize': -1},
        {'anneal_step': -5},
        {'sample_size': 0},
        {'initial_temperature': 0},
        {'seed': -1},
        {'alphabet': 'a'},
        {'alphabet': 'abca'},
    ])
    def test_invalid_optimization(self, section):
        with pytest.raises(ConfigError):
            config_from_dict(minimal(optimization=section))

    def test_negative_weight(self):
        with pytest.raises(ConfigError, match="cost.same_hand"):
            config_from_dict(minimal(cost={'same_hand': -1}))

    def test_validate_after_change(self):
        config = config_from_dict(minimal())
        config.optimization.steps = 0
        with pytest.raises(ConfigError):
            validate_config(config)
