import math
from typing import Dict, Iterator, Iterable, List, Optional, Tuple

import numpy as np

from errors import ConfigError, DataError


class RatingScale:
    """
    Linear mapping between raw ratings in [low, high] and normalized values in [-1, 1].
    """

    def __init__(self, low: float = 1.0, high: float = 5.0):
        """
        Args:
            low: Smallest raw rating allowed
            high: Largest raw rating allowed
        """
        if not (math.isfinite(low) and math.isfinite(high)) or low >= high:
            raise ConfigError(f"rating range must satisfy low < high, got [{low}, {high}]")
        self.low = float(low)
        self.high = float(high)
        self.midpoint = (self.low + self.high) / 2.0
        self.factor = (self.high - self.low) / 2.0

    def normalize(self, rating: float) -> float:
        """
        Rescale a raw rating to [-1, 1].
        Ratings outside the declared range are rejected rather than clamped.
        """
        try:
            rating = float(rating)
        except (TypeError, ValueError):
            raise DataError(f"rating {rating!r} is not a number") from None
        if not math.isfinite(rating) or rating < self.low or rating > self.high:
            raise DataError(f"rating {rating} outside [{self.low}, {self.high}]")
        return (rating - self.midpoint) / self.factor

    def denormalize(self, value):
        """Map normalized values (scalar or array) back to raw rating units."""
        return value * self.factor + self.midpoint

    def __repr__(self) -> str:
        return f"RatingScale(low={self.low}, high={self.high})"


class SparseVector:
    """
    One row or column of the rating matrix.
    Holds (index, value) pairs with unique, ascending indices; unknown ratings are absent.
    Appends are buffered and sorted once by build(); every read sees the built state.
    """

    __slots__ = ("_indices", "_values", "_pending_indices", "_pending_values", "_frozen")

    def __init__(self, indices: Optional[Iterable[int]] = None, values: Optional[Iterable[float]] = None):
        self._indices = np.empty(0, dtype=np.int64)
        self._values = np.empty(0, dtype=np.float64)
        self._pending_indices: List[int] = []
        self._pending_values: List[float] = []
        self._frozen = False
        if indices is not None:
            indices = list(indices)
            values = list(values) if values is not None else []
            if len(indices) != len(values):
                raise ValueError(f"indices/values length mismatch: {len(indices)} vs {len(values)}")
            self._pending_indices.extend(int(i) for i in indices)
            self._pending_values.extend(float(v) for v in values)
            self.build()

    def _check_mutable(self):
        if self._frozen:
            raise RuntimeError("SparseVector is frozen and cannot be modified")

    def append(self, index: int, value: float) -> None:
        """Buffer one (index, value) pair; ordering is restored by build()."""
        self._check_mutable()
        self._pending_indices.append(int(index))
        self._pending_values.append(float(value))

    def build(self) -> "SparseVector":
        """
        Merge buffered pairs into the sorted arrays.

        Raises:
            DataError: if an index occurs twice
        """
        if not self._pending_indices:
            return self
        indices = np.concatenate([self._indices, np.asarray(self._pending_indices, dtype=np.int64)])
        values = np.concatenate([self._values, np.asarray(self._pending_values, dtype=np.float64)])
        order = np.argsort(indices, kind="stable")
        indices, values = indices[order], values[order]
        duplicated = indices[1:] == indices[:-1]
        if duplicated.any():
            raise DataError(f"duplicate index {int(indices[1:][duplicated][0])} in sparse vector")
        self._indices, self._values = indices, values
        self._pending_indices = []
        self._pending_values = []
        return self

    def subtract(self, scalar: float) -> None:
        """Subtract a scalar from every stored value in place."""
        self._check_mutable()
        self.build()
        self._values -= scalar

    def freeze(self) -> "SparseVector":
        self.build()
        self._indices.setflags(write=False)
        self._values.setflags(write=False)
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def indices(self) -> np.ndarray:
        self.build()
        return self._indices

    @property
    def values(self) -> np.ndarray:
        self.build()
        return self._values

    def mean(self) -> Optional[float]:
        """Mean of the stored values, None when the vector is empty."""
        if len(self) == 0:
            return None
        return float(self.values.mean())

    def corrupted(self, indices: np.ndarray) -> "SparseVector":
        """Return a copy whose entries at `indices` are set to 0.0; the index set is unchanged."""
        values = self.values.copy()
        values[np.isin(self.indices, indices)] = 0.0
        return SparseVector._from_sorted(self.indices, values)

    @classmethod
    def _from_sorted(cls, indices: np.ndarray, values: np.ndarray) -> "SparseVector":
        vector = cls()
        vector._indices = np.asarray(indices, dtype=np.int64)
        vector._values = np.asarray(values, dtype=np.float64)
        return vector

    def to_dense(self, dim: int) -> np.ndarray:
        dense = np.zeros(dim, dtype=np.float64)
        dense[self.indices] = self.values
        return dense

    def __len__(self) -> int:
        return len(self._indices) + len(self._pending_indices)

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        return zip(self.indices.tolist(), self.values.tolist())

    def __repr__(self) -> str:
        pairs = ", ".join(f"{i}: {v:.3f}" for i, v in list(self)[:5])
        more = ", ..." if len(self) > 5 else ""
        return f"SparseVector({{{pairs}{more}}})"


class SparseDataset:
    """
    Mapping from entity id to SparseVector for one split of the rating matrix.

    Only entities with at least one rating are keys, so `entity_id in dataset`
    is the "has data" check used by the batch assembler.
    """

    def __init__(self, dim: int, num_entities: int):
        """
        Args:
            dim: Number of counterpart ids, i.e. the width of every vector
            num_entities: Size of the entity id domain 0..num_entities-1
        """
        self.dim = int(dim)
        self.num_entities = int(num_entities)
        self.vectors: Dict[int, SparseVector] = {}
        self.means: Dict[int, float] = {}
        self.finalized = False

    def append(self, entity_id: int, index: int, value: float) -> None:
        if self.finalized:
            raise RuntimeError("SparseDataset is finalized and cannot be modified")
        vector = self.vectors.get(entity_id)
        if vector is None:
            vector = self.vectors[entity_id] = SparseVector()
        vector.append(index, value)

    def build(self) -> None:
        for vector in self.vectors.values():
            vector.build()

    def center(self, means: Dict[int, float]) -> None:
        """
        Subtract a per-entity mean in place.
        Entities without a mean (no train ratings) are left untouched.
        """
        for entity_id, vector in self.vectors.items():
            mean = means.get(entity_id)
            if mean is not None:
                vector.subtract(mean)
        self.means = dict(means)

    def entity_means(self) -> Dict[int, float]:
        return {entity_id: vector.mean() for entity_id, vector in self.vectors.items() if len(vector) > 0}

    def finalize(self) -> "SparseDataset":
        for vector in self.vectors.values():
            vector.freeze()
        self.finalized = True
        return self

    def nnz(self) -> int:
        return sum(len(v) for v in self.vectors.values())

    def __getitem__(self, entity_id: int) -> SparseVector:
        return self.vectors[entity_id]

    def get(self, entity_id: int, default=None):
        return self.vectors.get(entity_id, default)

    def __contains__(self, entity_id) -> bool:
        vector = self.vectors.get(entity_id)
        return vector is not None and len(vector) > 0

    def __iter__(self):
        return iter(self.vectors)

    def __len__(self) -> int:
        return len(self.vectors)

    def keys(self):
        return self.vectors.keys()

    def items(self):
        return self.vectors.items()

    def __repr__(self) -> str:
        return (f"SparseDataset(entities={len(self)}/{self.num_entities}, "
                f"dim={self.dim}, ratings={self.nnz()})")
