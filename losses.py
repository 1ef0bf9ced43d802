"""Sparsity-aware reconstruction and denoising losses for AutoRec training."""
from typing import Callable, Optional, Tuple

import torch
import torch.nn as nn

from batching import SparseBatch
from errors import ConfigError, ShapeMismatchError


class SparseDenoisingLoss:
    """
    Weighted reconstruction + denoising error over known entries only.

    Entries hidden from the input are weighted by `alpha`, entries that stayed
    known by `beta`. Outputs at unknown positions never enter the loss, so an
    unknown rating is not treated as a rating at the midpoint of the scale.

    Args:
        input_dim: Width of the network input and output
        alpha: Weight of the denoising term (corrupted entries)
        beta: Weight of the reconstruction term (kept entries)
        size_average: Divide each vector's summed error by its number of contributing entries;
            the batch loss is the sum of these per-vector losses
        elementwise_loss: Unreduced loss applied per entry, squared error by default
    """

    def __init__(self, input_dim: int, alpha: float = 1.0, beta: float = 1.0, size_average: bool = True,
                 elementwise_loss: Optional[Callable] = None):
        if alpha < 0 or beta < 0:
            raise ConfigError(f"alpha and beta must be non-negative, got alpha={alpha}, beta={beta}")
        self.input_dim = int(input_dim)
        self.alpha = float(alpha)
        self.beta = float(beta)
        self.size_average = size_average
        self.elementwise_loss = elementwise_loss or nn.MSELoss(reduction='none')

    def _check_shape(self, output: torch.Tensor, target: SparseBatch) -> None:
        expected = (len(target), self.input_dim)
        if tuple(output.shape) != expected:
            raise ShapeMismatchError(f"network output shape {tuple(output.shape)}, expected {expected}")

    def weights(self, target: SparseBatch, corrupted: Optional[torch.Tensor], like: torch.Tensor) -> torch.Tensor:
        beta = torch.full((target.nnz,), self.beta, dtype=like.dtype, device=like.device)
        if corrupted is None:
            return beta
        return torch.where(corrupted.to(like.device), torch.full_like(beta, self.alpha), beta)

    def divisors(self, target: SparseBatch, like: torch.Tensor) -> torch.Tensor:
        """Per-entry divisor: the known-entry count of the entry's own row, or 1 without averaging."""
        if not self.size_average:
            return torch.ones(target.nnz, dtype=like.dtype, device=like.device)
        rows = target.rows.to(like.device)
        counts = torch.bincount(rows, minlength=len(target)).to(like.dtype)
        return counts[rows]

    def forward(self, output: torch.Tensor, target: SparseBatch,
                corrupted: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Args:
            output: Dense network output of shape (batch, input_dim)
            target: True sparse vectors of the batch
            corrupted: Bool flag per target entry, True where the entry was hidden
                from the input; None when nothing was hidden

        Returns:
            Scalar loss tensor, summed over the vectors of the batch
        """
        self._check_shape(output, target)
        if target.nnz == 0:
            return output.new_zeros(())
        rows, cols = target.rows.to(output.device), target.cols.to(output.device)
        predicted = output[rows, cols]
        true = target.values.to(device=output.device, dtype=output.dtype)
        errors = self.elementwise_loss(predicted, true)
        return (self.weights(target, corrupted, output) * errors / self.divisors(target, output)).sum()

    __call__ = forward

    def backward(self, output: torch.Tensor, target: SparseBatch,
                 corrupted: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Gradient of forward() with respect to `output`.
        Zero outside the known entries of `target`; uses the same divisors as forward().
        """
        self._check_shape(output, target)
        if target.nnz == 0:
            return torch.zeros_like(output)
        with torch.enable_grad():
            leaf = output.detach().requires_grad_(True)
            loss = self.forward(leaf, target, corrupted)
            gradient, = torch.autograd.grad(loss, leaf)
        return gradient


class SparseCriterion(SparseDenoisingLoss):
    """
    Scoring-only loss over the known entries of a test vector.
    No masking and no averaging: callers divide by the total count themselves.
    """

    def __init__(self, input_dim: int, elementwise_loss: Optional[Callable] = None):
        super().__init__(input_dim, alpha=0.0, beta=1.0, size_average=False, elementwise_loss=elementwise_loss)

    def score(self, output: torch.Tensor, target: SparseBatch) -> Tuple[float, int]:
        """Return (summed loss, number of scored entries)."""
        return float(self.forward(output, target)), target.nnz
