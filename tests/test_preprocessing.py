from __future__ import annotations

import numpy as np
import pytest

from errors import ConfigError, DataError
from preprocessing import build_datasets, read_ratings, to_triples
from sparse import RatingScale


def _grid_triples(num_entities=6, num_counterparts=9):
    return [(e, c, 1 + (3 * e + 7 * c) % 5) for e in range(num_entities) for c in range(num_counterparts)]


def test_every_triple_lands_in_exactly_one_split() -> None:
    triples = _grid_triples()
    train, test = build_datasets(triples, train_ratio=0.6, rng=np.random.default_rng(3))

    train_pairs = {(e, c) for e, v in train.items() for c in v.indices.tolist()}
    test_pairs = {(e, c) for e, v in test.items() for c in v.indices.tolist()}

    assert train_pairs.isdisjoint(test_pairs)
    assert train_pairs | test_pairs == {(e, c) for e, c, _ in triples}
    assert train.dim == test.dim == 9
    assert train.num_entities == test.num_entities == 6


def test_test_split_is_centered_with_train_mean_only() -> None:
    scale = RatingScale(1, 5)
    triples = _grid_triples()
    raw = {(e, c): scale.normalize(r) for e, c, r in triples}
    train, test = build_datasets(triples, scale=scale, train_ratio=0.5, rng=np.random.default_rng(11))

    for entity_id in test:
        if entity_id not in train:
            continue
        train_raw = [raw[(entity_id, c)] for c in train[entity_id].indices.tolist()]
        expected_mean = float(np.mean(train_raw))
        assert train.means[entity_id] == pytest.approx(expected_mean)
        assert test.means[entity_id] == pytest.approx(expected_mean)
        for c, value in test[entity_id]:
            assert value == pytest.approx(raw[(entity_id, c)] - expected_mean)
        assert train[entity_id].values.mean() == pytest.approx(0.0, abs=1e-12)


def test_all_ratings_go_to_train_with_ratio_one(scale) -> None:
    triples = [(0, 0, 5), (0, 1, 1), (1, 0, 4), (1, 1, 2)]
    train, test = build_datasets(triples, scale=scale, train_ratio=1.0, rng=np.random.default_rng(0))

    assert len(test) == 0
    assert train[0].values.tolist() == [1.0, -1.0]
    assert train[1].values.tolist() == [0.5, -0.5]
    assert train.finalized and test.finalized


def test_entities_without_train_ratings_stay_uncentered(scale) -> None:
    triples = [(0, 0, 5), (0, 1, 1)]
    train, test = build_datasets(triples, scale=scale, train_ratio=1e-12, rng=np.random.default_rng(0))

    assert 0 not in train
    assert test.means == {}
    assert test[0].values.tolist() == [1.0, -1.0]


@pytest.mark.parametrize("bad", [(0, 1, 6), (-1, 0, 3), (0, 1.5, 3), ("a", 0, 3), (0, 0)])
def test_strict_mode_raises_on_invalid_record(bad) -> None:
    triples = [(0, 0, 3), bad]
    with pytest.raises(DataError):
        build_datasets(triples, train_ratio=1.0, rng=np.random.default_rng(0))


def test_duplicate_pair_is_rejected() -> None:
    with pytest.raises(DataError):
        build_datasets([(0, 0, 3), (0, 0, 4)], train_ratio=1.0, rng=np.random.default_rng(0))


def test_lenient_mode_drops_invalid_records() -> None:
    triples = [(0, 0, 3), (0, 1, 9), (1, 0, 4), (1, 0, 5)]
    train, test = build_datasets(triples, train_ratio=1.0, rng=np.random.default_rng(0), strict=False)

    assert train.nnz() + test.nnz() == 2
    assert train[0].indices.tolist() == [0]


def test_counterpart_outside_dimension_is_rejected() -> None:
    with pytest.raises(DataError):
        build_datasets([(0, 4, 3)], train_ratio=1.0, rng=np.random.default_rng(0), dim=4)


@pytest.mark.parametrize("ratio", [0.0, -0.1, 1.5])
def test_train_ratio_is_validated(ratio) -> None:
    with pytest.raises(ConfigError):
        build_datasets([(0, 0, 3)], train_ratio=ratio)


def test_read_ratings_encodes_raw_ids(tmp_path) -> None:
    path = tmp_path / "ratings.dat"
    path.write_text("10::200::5::978300760\n10::100::3::978302109\n42::200::4::978301968\n")

    df, num_users, num_items = read_ratings(path, sep="::")

    assert (num_users, num_items) == (2, 2)
    assert df["user"].tolist() == [0, 0, 1]
    assert df["item"].tolist() == [1, 0, 1]

    assert to_triples(df, entity="item") == [(1, 0, 5), (0, 0, 3), (1, 1, 4)]
    assert to_triples(df, entity="user") == [(0, 1, 5), (0, 0, 3), (1, 1, 4)]
    with pytest.raises(ConfigError):
        to_triples(df, entity="movie")
