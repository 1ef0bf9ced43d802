from __future__ import annotations

import numpy as np
import pytest

from errors import ConfigError, DataError
from sparse import RatingScale, SparseDataset, SparseVector


def test_append_then_build_gives_sorted_unique_indices() -> None:
    vector = SparseVector()
    for index, value in [(7, 0.1), (2, 0.2), (9, 0.3), (0, 0.4)]:
        vector.append(index, value)
    vector.build()
    vector.append(5, 0.5)
    vector.append(1, 0.6)

    assert vector.indices.tolist() == [0, 1, 2, 5, 7, 9]
    assert vector.values.tolist() == [0.4, 0.6, 0.2, 0.5, 0.1, 0.3]
    assert np.all(np.diff(vector.indices) > 0)
    assert list(vector)[0] == (0, 0.4)


def test_duplicate_index_is_a_data_error() -> None:
    vector = SparseVector([3, 1], [1.0, 2.0])
    vector.append(3, 0.5)
    with pytest.raises(DataError):
        vector.build()


def test_subtract_and_mean() -> None:
    vector = SparseVector([0, 4], [1.0, 3.0])
    assert vector.mean() == 2.0
    vector.subtract(2.0)
    assert vector.values.tolist() == [-1.0, 1.0]

    empty = SparseVector()
    empty.subtract(5.0)
    assert len(empty) == 0
    assert empty.mean() is None


def test_frozen_vector_rejects_mutation() -> None:
    vector = SparseVector([1], [0.5]).freeze()
    with pytest.raises(RuntimeError):
        vector.append(2, 0.1)
    with pytest.raises(RuntimeError):
        vector.subtract(0.1)
    with pytest.raises(ValueError):
        vector.values[0] = 1.0


def test_corrupted_copy_keeps_index_set() -> None:
    vector = SparseVector([0, 2, 5], [0.5, -0.5, 1.0]).freeze()
    hidden = vector.corrupted(np.array([2]))
    assert hidden.indices.tolist() == [0, 2, 5]
    assert hidden.values.tolist() == [0.5, 0.0, 1.0]
    assert vector.values.tolist() == [0.5, -0.5, 1.0]
    assert hidden.to_dense(6).tolist() == [0.5, 0.0, 0.0, 0.0, 0.0, 1.0]


def test_rating_scale_maps_range_onto_unit_interval() -> None:
    scale = RatingScale(1, 5)
    assert scale.normalize(1) == -1.0
    assert scale.normalize(3) == 0.0
    assert scale.normalize(5) == 1.0
    assert scale.factor == 2.0
    assert scale.denormalize(0.5) == 4.0


@pytest.mark.parametrize("rating", [0.5, 5.5, float("nan"), "four"])
def test_rating_scale_rejects_out_of_range(rating) -> None:
    with pytest.raises(DataError):
        RatingScale(1, 5).normalize(rating)


def test_rating_scale_bounds_must_be_ordered() -> None:
    with pytest.raises(ConfigError):
        RatingScale(5, 1)


def test_dataset_membership_means_has_ratings() -> None:
    dataset = SparseDataset(dim=3, num_entities=4)
    dataset.append(2, 1, 0.5)
    dataset.append(2, 0, -0.5)
    dataset.build()
    dataset.finalize()

    assert 2 in dataset
    assert 0 not in dataset
    assert dataset[2].indices.tolist() == [0, 1]
    assert dataset.nnz() == 2
    with pytest.raises(RuntimeError):
        dataset.append(0, 0, 0.1)
