import math
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np
import torch

from errors import ConfigError
from sparse import SparseDataset, SparseVector


class SparseBatch:
    """
    Ragged minibatch of sparse vectors stored as parallel arrays.
    Entry k is the rating `values[k]` at row `rows[k]` (position in the batch)
    and column `cols[k]` (counterpart index).
    """

    def __init__(self, rows, cols, values, ids, input_dim):
        self.rows = rows
        self.cols = cols
        self.values = values
        self.ids = list(ids)
        self.input_dim = int(input_dim)

    @classmethod
    def from_vectors(cls, vectors: Sequence[SparseVector], input_dim: int, ids=None) -> "SparseBatch":
        """
        Args:
            vectors: Sparse vectors, one per batch row
            input_dim: Width of the dense representation
            ids: Entity ids aligned with `vectors`, defaults to positions

        Returns:
            SparseBatch holding all known entries of `vectors`
        """
        ids = list(range(len(vectors))) if ids is None else list(ids)
        if len(ids) != len(vectors):
            raise ValueError(f"ids/vectors length mismatch: {len(ids)} vs {len(vectors)}")
        lengths = [len(v) for v in vectors]
        if vectors:
            cols = np.concatenate([v.indices for v in vectors])
            values = np.concatenate([v.values for v in vectors])
        else:
            cols = np.empty(0, dtype=np.int64)
            values = np.empty(0, dtype=np.float64)
        rows = np.repeat(np.arange(len(vectors), dtype=np.int64), lengths)
        return cls(
            rows=torch.as_tensor(rows, dtype=torch.long),
            cols=torch.as_tensor(cols, dtype=torch.long),
            values=torch.as_tensor(values, dtype=torch.float32),
            ids=ids,
            input_dim=input_dim,
        )

    @classmethod
    def from_dataset(cls, dataset: SparseDataset, ids: Sequence[int]) -> "SparseBatch":
        return cls.from_vectors([dataset[i] for i in ids], dataset.dim, ids)

    @property
    def nnz(self) -> int:
        return int(self.values.numel())

    def to_dense(self) -> torch.Tensor:
        """Zero-filled (batch, input_dim) tensor; unknown entries become 0."""
        dense = torch.zeros(len(self), self.input_dim, dtype=self.values.dtype, device=self.values.device)
        dense[self.rows, self.cols] = self.values
        return dense

    def to(self, device) -> "SparseBatch":
        return SparseBatch(self.rows.to(device), self.cols.to(device), self.values.to(device),
                           self.ids, self.input_dim)

    def __len__(self) -> int:
        return len(self.ids)

    def __repr__(self) -> str:
        return f"SparseBatch(size={len(self)}, nnz={self.nnz}, input_dim={self.input_dim})"


class BatchAssembler:
    """
    Lazy, restartable sequence of minibatches of entity ids.
    Every iteration draws a fresh permutation of the entity domain from `rng`.
    """

    def __init__(self, num_entities: int, batch_size: int, predicate: Callable[[int], bool],
                 rng: Optional[np.random.Generator] = None):
        if batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {batch_size}")
        self.num_entities = int(num_entities)
        self.batch_size = int(batch_size)
        self.predicate = predicate
        self.rng = rng if rng is not None else np.random.default_rng()

    def eligible(self) -> List[int]:
        return [i for i in range(self.num_entities) if self.predicate(i)]

    def __iter__(self) -> Iterator[List[int]]:
        permutation = self.rng.permutation(self.num_entities)
        batch = []
        for entity_id in permutation.tolist():
            if not self.predicate(entity_id):
                continue
            batch.append(entity_id)
            if len(batch) == self.batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def __len__(self) -> int:
        return math.ceil(len(self.eligible()) / self.batch_size)


def make_batches(dataset: SparseDataset, batch_size: int, predicate: Optional[Callable[[int], bool]] = None,
                 rng: Optional[np.random.Generator] = None) -> BatchAssembler:
    """
    Build a batch assembler over the full entity id domain of `dataset`.
    Ids for which `predicate` is false are skipped; by default, ids without data.
    """
    if predicate is None:
        predicate = dataset.__contains__
    return BatchAssembler(dataset.num_entities, batch_size, predicate, rng)


def joint_predicate(train: SparseDataset, test: SparseDataset) -> Callable[[int], bool]:
    """Evaluation filter: the entity has both train and test ratings."""
    return lambda entity_id: entity_id in train and entity_id in test
