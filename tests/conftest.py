from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# The project is a set of top-level modules; make them importable without installing.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from preprocessing import build_datasets  # noqa: E402
from sparse import RatingScale, SparseDataset  # noqa: E402


# (user, item, rating): u1 rates i1=5, i2=1; u2 rates i1=4, i2=2.
TOY_TRIPLES = [(0, 0, 5), (0, 1, 1), (1, 0, 4), (1, 1, 2)]


@pytest.fixture
def scale() -> RatingScale:
    return RatingScale(1, 5)


@pytest.fixture
def toy_heldout(scale):
    """Train on three toy ratings, hold out (u1, i1, 5) as the only test rating."""
    train, _ = build_datasets(TOY_TRIPLES[1:], scale=scale, train_ratio=1.0,
                              rng=np.random.default_rng(0), dim=2, num_entities=2)
    test = SparseDataset(dim=2, num_entities=2)
    test.append(0, 0, scale.normalize(5))
    test.build()
    test.center(train.means)
    test.finalize()
    return train, test
