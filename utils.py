import enum
import math
import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim

from batching import SparseBatch, joint_predicate, make_batches
from config import TrainingConfig
from errors import DegenerateBatchWarning, ShapeMismatchError
from logger import setup_logger
from losses import SparseCriterion, SparseDenoisingLoss
from masking import corrupt_batch
from preprocessing import device
from sparse import RatingScale, SparseDataset

logger = setup_logger(__name__)


class EarlyStopping:
    def __init__(self, patience=5, min_delta=0.0):
        self.patience = patience
        self.min_delta = min_delta
        self.best_score = None
        self.counter = 0
        self.early_stop = False

    def __call__(self, current_value):
        if self.best_score is None or current_value < self.best_score - self.min_delta:
            self.best_score = current_value
            self.counter = 0
        else:
            self.counter += 1
            if self.counter >= self.patience:
                self.early_stop = True


class TrainingState(enum.Enum):
    IDLE = 'idle'
    EPOCH_RUNNING = 'epoch_running'
    BATCH_RUNNING = 'batch_running'
    GRADIENT_APPLIED = 'gradient_applied'
    SKIPPED = 'skipped'
    TERMINATED = 'terminated'


@dataclass
class TrainingSession:
    """
    Mutable state of one training run.
    Passing a session back into train_autoencoder resumes at the next epoch.
    """
    optimizer: optim.Optimizer
    rng: np.random.Generator
    scheduler: Optional[optim.lr_scheduler.LRScheduler] = None
    state: TrainingState = TrainingState.IDLE
    epoch: int = 0
    steps: int = 0
    skipped_batches: int = 0
    train_loss: List[float] = field(default_factory=list)
    test_rmse: List[float] = field(default_factory=list)

    @classmethod
    def start(cls, net: nn.Module, config: TrainingConfig) -> "TrainingSession":
        torch.manual_seed(config.seed)
        optimizer = build_optimizer(net, config)
        return cls(
            optimizer=optimizer,
            rng=np.random.default_rng(config.seed),
            scheduler=build_scheduler(optimizer, config.lr_decay),
        )


def build_optimizer(net: nn.Module, config: TrainingConfig) -> optim.Optimizer:
    if config.optimizer == 'sgd':
        return optim.SGD(net.parameters(), lr=config.lr, weight_decay=config.weight_decay)
    return optim.Adam(net.parameters(), lr=config.lr, weight_decay=config.weight_decay)


def build_scheduler(optimizer: optim.Optimizer, lr_decay: float):
    """Learning rate lr / (1 + step * lr_decay); None when there is no decay."""
    if lr_decay <= 0:
        return None
    return optim.lr_scheduler.LambdaLR(optimizer, lambda step: 1.0 / (1.0 + step * lr_decay))


def train_step(net, ids, train: SparseDataset, criterion: SparseDenoisingLoss, session: TrainingSession,
               hide_ratio: float, device=device) -> Optional[float]:
    """
    Corrupt one minibatch, run it through the network and apply one optimizer step.

    Returns:
        Batch loss, or None when the batch had no known entries and was skipped
    """
    session.state = TrainingState.BATCH_RUNNING
    vectors = [train[i] for i in ids]
    masked = corrupt_batch(vectors, hide_ratio, session.rng, train.dim, ids)

    if masked.target.nnz == 0:
        warnings.warn(f"batch of {len(ids)} entities has no known ratings, skipped", DegenerateBatchWarning)
        logger.warning(f"Skipping degenerate batch of {len(ids)} entities")
        session.skipped_batches += 1
        session.state = TrainingState.SKIPPED
        return None

    inputs = masked.inputs.to(device)
    target = masked.target.to(device)
    corrupted = masked.corrupted.to(device)

    output = net(inputs.to_dense())
    # per-vector losses, averaged once over the batch
    loss = criterion.forward(output.detach(), target, corrupted) / len(target)
    gradient = criterion.backward(output, target, corrupted) / len(target)

    session.optimizer.zero_grad()
    output.backward(gradient)
    session.optimizer.step()
    if session.scheduler is not None:
        session.scheduler.step()

    session.steps += 1
    session.state = TrainingState.GRADIENT_APPLIED
    return loss.item()


def train_autoencoder(net: nn.Module, train: SparseDataset, test: Optional[SparseDataset], config: TrainingConfig,
                      session: Optional[TrainingSession] = None, early_stopping: Optional[EarlyStopping] = None,
                      device=device, verbose=True) -> TrainingSession:
    """
    Train the autoencoder with the sparse denoising loss.
    Performs complete training loop with loss monitoring and per-epoch test RMSE.

    Args:
        net: Network mapping (batch, dim) inputs to (batch, dim) outputs
        train: Training split, mean-centered
        test: Held-out split used for the per-epoch RMSE, may be None
        config: Validated training configuration
        session: Existing session to resume, a new one is started when None
        early_stopping: Callable fed with each epoch's RMSE; its `early_stop` flag ends training
        device: Torch device for the network and batches
        verbose: Log one line per epoch

    Returns:
        TrainingSession with the loss and RMSE history
    """
    input_dim = getattr(net, 'input_dim', train.dim)
    if input_dim != train.dim:
        raise ShapeMismatchError(f"network input dimension {input_dim} does not match dataset dimension {train.dim}")
    net.to(device)
    if session is None:
        session = TrainingSession.start(net, config)
    criterion = SparseDenoisingLoss(train.dim, alpha=config.alpha, beta=config.beta,
                                    size_average=config.size_average)
    batches = make_batches(train, config.batch_size, rng=session.rng)
    scale_factor = config.scale().factor

    while session.epoch < config.epochs:
        session.state = TrainingState.EPOCH_RUNNING
        net.train()
        total_loss, applied = 0.0, 0
        for ids in batches:
            loss = train_step(net, ids, train, criterion, session, config.hide_ratio, device)
            if loss is not None:
                total_loss += loss
                applied += 1

        session.epoch += 1
        train_l = total_loss / applied if applied else float('nan')
        rmse = evaluate(net, train, test, scale_factor, config.batch_size, device) if test is not None else None
        session.train_loss.append(train_l)
        session.test_rmse.append(rmse)

        if verbose:
            rmse_text = f"{rmse:.4f}" if rmse is not None else "n/a"
            logger.info(f"Epoch {session.epoch}/{config.epochs} | train loss = {train_l:.4f} | "
                        f"test RMSE = {rmse_text}")

        if early_stopping is not None and rmse is not None and not math.isnan(rmse):
            early_stopping(rmse)
            if early_stopping.early_stop:
                logger.info(f"Early stopping triggered at epoch {session.epoch}")
                session.state = TrainingState.TERMINATED
                return session

    session.state = TrainingState.IDLE
    return session


def evaluate(net: nn.Module, train: SparseDataset, test: SparseDataset, scale_factor: float = 1.0,
             batch_size: int = 256, device=device) -> float:
    """
    RMSE of the network's predictions on held-out ratings, in original rating units.

    Only entities with both train and test ratings are scored: the train vector
    is fed to the network and the output is compared at the test-known indices.

    Returns:
        RMSE, or nan when no test rating can be scored
    """
    criterion = SparseCriterion(train.dim)
    batches = make_batches(train, batch_size, joint_predicate(train, test), rng=np.random.default_rng(0))
    total_error, total_count = 0.0, 0

    was_training = net.training
    net.eval()
    try:
        with torch.no_grad():
            for ids in batches:
                inputs = SparseBatch.from_dataset(train, ids).to(device)
                target = SparseBatch.from_dataset(test, ids).to(device)
                output = net(inputs.to_dense())
                error, count = criterion.score(output, target)
                total_error += error
                total_count += count
    finally:
        net.train(was_training)

    if total_count == 0:
        return float('nan')
    return math.sqrt(total_error / total_count) * scale_factor


class AutoRecPredictor:
    """
    Prediction wrapper for a trained AutoRec model.
    Turns network outputs back into ratings on the original scale.
    """

    def __init__(self, model: nn.Module, train: SparseDataset, scale: RatingScale, device=device):
        self.model = model
        self.train = train
        self.scale = scale
        self.device = device

    def predict(self, entity_id: int) -> Optional[np.ndarray]:
        """Predicted rating for every counterpart, None if the entity has no train ratings."""
        if entity_id not in self.train:
            return None
        inputs = SparseBatch.from_dataset(self.train, [entity_id]).to(self.device)
        was_training = self.model.training
        self.model.eval()
        try:
            with torch.no_grad():
                output = self.model(inputs.to_dense())[0].cpu().numpy()
        finally:
            self.model.train(was_training)
        return self.scale.denormalize(output.astype(np.float64) + self.train.means[entity_id])

    def recommend(self, entity_id: int, top_k: int = 10) -> List[Tuple[int, float]]:
        """Best predicted counterparts among those the entity has not rated."""
        predictions = self.predict(entity_id)
        if predictions is None:
            return []
        unrated = np.setdiff1d(np.arange(self.train.dim), self.train[entity_id].indices, assume_unique=True)
        top = unrated[np.argsort(predictions[unrated])[::-1][:top_k]]
        return [(int(c), float(predictions[c])) for c in top]


def display_recommendations(recommendations, title="Recommendations"):
    print(f"\n=== {title} ===")
    if not recommendations:
        print("No prediction possible.")
    for i, (counterpart, score) in enumerate(recommendations, 1):
        print(f"{i}. {counterpart}: {score:.4f}")
