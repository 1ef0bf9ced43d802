import math
from typing import NamedTuple, Sequence

import numpy as np
import torch

from batching import SparseBatch
from errors import ConfigError
from sparse import SparseVector


class Corruption(NamedTuple):
    vector: SparseVector
    corrupted_indices: np.ndarray
    kept_indices: np.ndarray


class MaskedBatch(NamedTuple):
    inputs: SparseBatch
    target: SparseBatch
    corrupted: torch.Tensor


def check_hide_ratio(hide_ratio: float) -> None:
    if not 0.0 <= hide_ratio <= 1.0:
        raise ConfigError(f"hide_ratio must be in [0, 1], got {hide_ratio}")


def num_corrupted(hide_ratio: float, n: int) -> int:
    """round(hide_ratio * n), halves rounded up."""
    return int(math.floor(hide_ratio * n + 0.5))


def corrupt(vector: SparseVector, hide_ratio: float, rng: np.random.Generator) -> Corruption:
    """
    Hide a random subset of known entries for denoising.

    Args:
        vector: True sparse vector
        hide_ratio: Fraction of known entries to hide
        rng: Random generator choosing the hidden entries

    Returns:
        Corruption with the input vector (hidden entries set to 0.0), the hidden
        indices and the indices that stay known; both index arrays are sorted
    """
    check_hide_ratio(hide_ratio)
    known = vector.indices
    k = num_corrupted(hide_ratio, len(known))
    if k == 0:
        return Corruption(vector, np.empty(0, dtype=np.int64), known.copy())

    hidden = np.sort(rng.choice(known, size=k, replace=False))
    kept = np.setdiff1d(known, hidden, assume_unique=True)
    return Corruption(vector.corrupted(hidden), hidden, kept)


def corrupt_batch(vectors: Sequence[SparseVector], hide_ratio: float, rng: np.random.Generator,
                  input_dim: int, ids=None) -> MaskedBatch:
    """
    Corrupt every vector of a minibatch.
    The returned flag tensor is aligned with the entries of `target`.
    """
    corruptions = [corrupt(v, hide_ratio, rng) for v in vectors]
    inputs = SparseBatch.from_vectors([c.vector for c in corruptions], input_dim, ids)
    target = SparseBatch.from_vectors(vectors, input_dim, ids)
    if corruptions:
        flags = np.concatenate([np.isin(v.indices, c.corrupted_indices) for v, c in zip(vectors, corruptions)])
    else:
        flags = np.empty(0, dtype=bool)
    return MaskedBatch(inputs, target, torch.as_tensor(flags, dtype=torch.bool))
