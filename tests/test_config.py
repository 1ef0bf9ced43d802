from __future__ import annotations

import pytest

from config import ConfigManager, TrainingConfig, export_config_yaml, load_config_yaml
from errors import ConfigError


def test_defaults_are_valid() -> None:
    config = TrainingConfig()
    assert config.scale().factor == 2.0
    assert config.optimizer == 'adam'


@pytest.mark.parametrize("field,value", [
    ("alpha", -0.1),
    ("beta", -1.0),
    ("hide_ratio", 1.2),
    ("hide_ratio", -0.01),
    ("batch_size", 0),
    ("train_ratio", 0.0),
    ("train_ratio", 1.1),
    ("epochs", 0),
    ("lr", 0.0),
    ("lr_decay", -0.5),
    ("weight_decay", -1e-4),
    ("dropout", 1.0),
    ("optimizer", "rmsprop"),
    ("entity", "movie"),
    ("rating_max", 1.0),
])
def test_out_of_range_values_fail_fast(field, value) -> None:
    with pytest.raises(ConfigError):
        TrainingConfig(**{field: value})


def test_nested_dict_round_trip() -> None:
    config = TrainingConfig(alpha=0.8, hide_ratio=0.4, epochs=3, entity='user')
    nested = config.to_dict()
    assert nested['hyperparameters']['alpha'] == 0.8
    assert nested['training']['epochs'] == 3
    assert nested['data']['entity'] == 'user'

    nested['model_config'] = {'name': 'AutoRec'}
    nested['hyperparameters']['unknown_key'] = 1
    assert TrainingConfig.from_dict(nested) == config


def test_from_dict_validates() -> None:
    with pytest.raises(ConfigError):
        TrainingConfig.from_dict({'hyperparameters': {'batch_size': -4}})


def test_manager_persists_and_records_hpo_results(tmp_path) -> None:
    manager = ConfigManager(str(tmp_path / "autorec_config.pkl"))
    default = manager.load_config()
    assert default['optimization_results']['optimized'] is False

    updated = manager.update_from_hpo({'lr': 0.005, 'hide_ratio': 0.3}, 0.91)
    reloaded = manager.load_config()
    assert reloaded == updated
    assert reloaded['optimization_results']['optimized'] is True
    assert TrainingConfig.from_dict(reloaded).hide_ratio == 0.3

    with pytest.raises(ConfigError):
        manager.update_from_hpo({'hide_ratio': 3.0}, 0.5)


def test_yaml_export_round_trip(tmp_path) -> None:
    path = tmp_path / "best.yaml"
    nested = TrainingConfig(batch_size=16).to_dict()
    export_config_yaml(nested, str(path))
    assert load_config_yaml(str(path)) == nested
    assert TrainingConfig.from_dict(load_config_yaml(str(path))).batch_size == 16
