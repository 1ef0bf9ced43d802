import copy
import math
import os
import pickle
from dataclasses import asdict, dataclass, fields
from typing import Dict, Any

import yaml

from errors import ConfigError
from logger import setup_logger
from preprocessing import ENTITY_TYPES
from sparse import RatingScale

logger = setup_logger(__name__)

OPTIMIZERS = ('adam', 'sgd')

# Section of the nested config dictionary each TrainingConfig field lives in.
SECTIONS = {
    'hyperparameters': ('alpha', 'beta', 'hide_ratio', 'size_average', 'batch_size', 'hidden_dim',
                        'dropout', 'lr', 'lr_decay', 'weight_decay', 'optimizer'),
    'training': ('epochs', 'seed', 'early_stopping_patience'),
    'data': ('train_ratio', 'rating_min', 'rating_max', 'entity', 'strict'),
}


@dataclass(frozen=True)
class TrainingConfig:
    alpha: float = 1.0
    beta: float = 0.5
    hide_ratio: float = 0.25
    size_average: bool = True
    batch_size: int = 64
    hidden_dim: int = 512
    dropout: float = 0.2
    lr: float = 0.001
    lr_decay: float = 0.0
    weight_decay: float = 0.0001
    optimizer: str = 'adam'
    epochs: int = 20
    seed: int = 42
    early_stopping_patience: int = 7
    train_ratio: float = 0.9
    rating_min: float = 1.0
    rating_max: float = 5.0
    entity: str = 'item'
    strict: bool = True

    def __post_init__(self):
        checks = [
            (self.alpha >= 0, f"alpha must be >= 0, got {self.alpha}"),
            (self.beta >= 0, f"beta must be >= 0, got {self.beta}"),
            (0.0 <= self.hide_ratio <= 1.0, f"hide_ratio must be in [0, 1], got {self.hide_ratio}"),
            (self.batch_size > 0, f"batch_size must be > 0, got {self.batch_size}"),
            (self.hidden_dim > 0, f"hidden_dim must be > 0, got {self.hidden_dim}"),
            (0.0 <= self.dropout < 1.0, f"dropout must be in [0, 1), got {self.dropout}"),
            (self.lr > 0, f"lr must be > 0, got {self.lr}"),
            (self.lr_decay >= 0, f"lr_decay must be >= 0, got {self.lr_decay}"),
            (self.weight_decay >= 0, f"weight_decay must be >= 0, got {self.weight_decay}"),
            (self.optimizer in OPTIMIZERS, f"optimizer must be one of {OPTIMIZERS}, got {self.optimizer!r}"),
            (self.epochs > 0, f"epochs must be > 0, got {self.epochs}"),
            (self.early_stopping_patience > 0,
             f"early_stopping_patience must be > 0, got {self.early_stopping_patience}"),
            (0.0 < self.train_ratio <= 1.0,
             f"train_ratio must be in (0, 1], got {self.train_ratio}"),
            (math.isfinite(self.rating_min) and math.isfinite(self.rating_max)
             and self.rating_min < self.rating_max,
             f"rating range must satisfy min < max, got [{self.rating_min}, {self.rating_max}]"),
            (self.entity in ENTITY_TYPES, f"entity must be one of {ENTITY_TYPES}, got {self.entity!r}"),
        ]
        for ok, message in checks:
            if not ok:
                raise ConfigError(message)

    def scale(self) -> RatingScale:
        return RatingScale(self.rating_min, self.rating_max)

    def replace(self, **changes) -> "TrainingConfig":
        values = asdict(self)
        values.update(changes)
        return TrainingConfig(**values)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "TrainingConfig":
        """
        Build a validated config from the nested dictionary kept by ConfigManager.
        Keys outside the known sections are ignored.

        Args:
            config: Nested dictionary with 'hyperparameters', 'training' and 'data' sections

        Returns:
            TrainingConfig
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for section in SECTIONS:
            for key, value in (config.get(section) or {}).items():
                if key in known:
                    values[key] = value
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        return {section: {key: values[key] for key in keys} for section, keys in SECTIONS.items()}


class ConfigManager:
    """
    Python-based configuration management system using pickle files.
    Handles storage and retrieval of model hyperparameters and optimization results.
    """

    def __init__(self, config_file: str = "autorec_config.pkl"):
        """
        Args:
            config_file: Path to the configuration pickle file
        """
        self.config_file = config_file
        self.default_config = self._create_default_config()

    def _create_default_config(self) -> Dict[str, Any]:
        config = TrainingConfig().to_dict()
        config['model_config'] = {
            'name': 'AutoRec',
            'model_type': 'denoising_autoencoder',
        }
        config['optimization_results'] = {
            'optimized': False,
            'best_value': None,
        }
        return config

    def save_config(self, config: Dict[str, Any]) -> None:
        TrainingConfig.from_dict(config)
        with open(self.config_file, 'wb') as f:
            pickle.dump(config, f)
        logger.info(f"Configuration saved to {self.config_file}")

    def load_config(self) -> Dict[str, Any]:
        """
        Load configuration from pickle file or return default if file doesn't exist.

        Returns:
            Configuration dictionary
        """
        if os.path.exists(self.config_file):
            with open(self.config_file, 'rb') as f:
                return pickle.load(f)
        logger.info(f"Config file {self.config_file} not found. Using default configuration.")
        return copy.deepcopy(self.default_config)

    def update_from_hpo(self, best_params: Dict[str, Any], best_value: float) -> Dict[str, Any]:
        """
        Update configuration with hyperparameter optimization results.

        Args:
            best_params: Dictionary of optimized hyperparameters
            best_value: Best objective value achieved during optimization

        Returns:
            Updated configuration dictionary
        """
        config = self.load_config()
        config['hyperparameters'].update(best_params)
        config['optimization_results'] = {
            'optimized': True,
            'best_value': best_value,
            'best_params': best_params,
        }
        self.save_config(config)
        return config


def export_config_yaml(config: Dict[str, Any], filename: str) -> None:
    with open(filename, 'w') as file:
        yaml.safe_dump(config, file, default_flow_style=False, indent=2)
    logger.info(f"Configuration exported to {filename}")


def load_config_yaml(filename: str) -> Dict[str, Any]:
    with open(filename, 'r') as file:
        config = yaml.safe_load(file) or {}
    if not isinstance(config, dict):
        raise ConfigError(f"{filename} does not contain a configuration mapping")
    return config


config_manager = ConfigManager()


def get_config() -> Dict[str, Any]:
    """Get current configuration from the global config manager."""
    return config_manager.load_config()


def save_hpo_results(best_params: Dict[str, Any], best_value: float) -> Dict[str, Any]:
    """Save hyperparameter optimization results to configuration."""
    return config_manager.update_from_hpo(best_params, best_value)
