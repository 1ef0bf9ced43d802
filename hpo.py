import math

import optuna
from optuna.trial import TrialState
import optuna.visualization as vis

from autorec import AutoRec
from config import TrainingConfig, export_config_yaml, save_hpo_results
from logger import setup_logger
from preprocessing import device
from utils import EarlyStopping, train_autoencoder

logger = setup_logger(__name__)


class OptunaEarlyStoppingCallback:
    def __init__(self, patience=5, min_delta=0.0):
        self.patience = patience
        self.min_delta = min_delta
        self.best_value = float('inf')
        self.no_improvement_count = 0

    def __call__(self, study, trial):
        if not any(t.state == TrialState.COMPLETE for t in study.trials):
            return
        current_best = study.best_value
        if current_best < self.best_value - self.min_delta:
            self.best_value = current_best
            self.no_improvement_count = 0
        else:
            self.no_improvement_count += 1
        if self.no_improvement_count >= self.patience:
            logger.info(f"Stopping study after {self.patience} trials without improvement")
            study.stop()


def objective(trial, train, test, base_config: TrainingConfig):
    """
    Optuna objective function for hyperparameter optimization.
    Defines the search space and trains a fresh model with the suggested parameters.

    Args:
        trial: Optuna trial object containing suggested hyperparameters
        train: Training split
        test: Held-out split scored after every epoch
        base_config: Configuration supplying every parameter that is not searched

    Returns:
        Best test RMSE reached during the trial
    """
    config = base_config.replace(
        hidden_dim=trial.suggest_categorical('hidden_dim', [32, 64, 128, 256, 512, 1024]),
        lr=trial.suggest_float('lr', 1e-4, 1e-2, log=True),
        weight_decay=trial.suggest_float('weight_decay', 1e-5, 1e-3, log=True),
        batch_size=trial.suggest_categorical('batch_size', [16, 32, 64, 128, 256]),
        alpha=trial.suggest_float('alpha', 0.5, 1.5),
        beta=trial.suggest_float('beta', 0.0, 1.0),
        hide_ratio=trial.suggest_float('hide_ratio', 0.0, 0.5),
        seed=base_config.seed + trial.number,
    )

    net = AutoRec.from_config(config, train.dim).to(device)
    session = train_autoencoder(
        net, train, test, config,
        early_stopping=EarlyStopping(patience=config.early_stopping_patience, min_delta=1e-4),
        verbose=False,
    )

    scores = [r for r in session.test_rmse if r is not None and not math.isnan(r)]
    if not scores:
        raise optuna.TrialPruned("no test rating could be scored")
    best = min(scores)
    logger.info(f"Trial {trial.number}: hidden_dim={config.hidden_dim}, lr={config.lr:.6f}, "
                f"weight_decay={config.weight_decay:.6f}, batch_size={config.batch_size}, "
                f"alpha={config.alpha:.3f}, beta={config.beta:.3f}, hide_ratio={config.hide_ratio:.3f}, "
                f"best_rmse={best:.6f}")
    return best


def run(train, test, base_config=None, n_trials=100, patience=5, show_plots=False,
        yaml_file="Auto_Rec_best_params.yaml"):
    """
    Execute hyperparameter optimization study with early stopping.

    Returns:
        Dictionary of best hyperparameters found during optimization
    """
    base_config = base_config or TrainingConfig()
    early_stopping = OptunaEarlyStoppingCallback(patience=patience)
    study = optuna.create_study(study_name="AutoRec HPO", direction='minimize')
    study.optimize(lambda trial: objective(trial, train, test, base_config),
                   n_trials=n_trials, callbacks=[early_stopping])

    config = save_hpo_results(study.best_params, study.best_value)
    export_config_yaml(config, yaml_file)

    logger.info(f"Best test RMSE: {study.best_value}")
    logger.info(f"Best hyperparameters: {study.best_params}")

    if show_plots:
        vis.plot_optimization_history(study).show()
        vis.plot_param_importances(study).show()
        vis.plot_parallel_coordinate(study).show()

    return study.best_params
