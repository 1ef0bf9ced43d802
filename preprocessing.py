import math
import numbers
from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import LabelEncoder
import torch

from errors import ConfigError, DataError
from logger import setup_logger
from sparse import RatingScale, SparseDataset

logger = setup_logger(__name__)

device = 'cuda' if torch.cuda.is_available() else 'cpu'

ENTITY_TYPES = ('item', 'user')


def read_ratings(path, sep=',', header=None):
    """
    Load a delimiter-separated rating log and encode raw ids to dense indices.
    Expected columns are user, item, rating and an optional timestamp.

    Args:
        path: Path to the rating log
        sep: Column delimiter; multi-character delimiters such as '::' are supported
        header: Row number of the header line, None if the file has no header

    Returns:
        Tuple of (ratings_dataframe, num_users, num_items)
    """
    engine = 'python' if len(sep) > 1 else 'c'
    df = pd.read_csv(path, sep=sep, header=header, engine=engine)
    if df.shape[1] < 3:
        raise DataError(f"rating log must have at least 3 columns, found {df.shape[1]}")

    df = df.iloc[:, :3].copy()
    df.columns = ['user', 'item', 'rating']
    df = df.dropna(subset=['user', 'item']).reset_index(drop=True)

    user_encoder = LabelEncoder()
    item_encoder = LabelEncoder()
    df['user'] = user_encoder.fit_transform(df['user'])
    df['item'] = item_encoder.fit_transform(df['item'])

    num_users = len(user_encoder.classes_)
    num_items = len(item_encoder.classes_)
    logger.info(f"Read {len(df)} ratings from {path}: {num_users} users, {num_items} items")

    return df, num_users, num_items


def to_triples(df, entity='item'):
    """
    Order rating columns as (entity, counterpart, rating).
    With entity='item' every item vector is autoencoded over users, and vice versa.
    """
    if entity not in ENTITY_TYPES:
        raise ConfigError(f"entity must be one of {ENTITY_TYPES}, got {entity!r}")
    counterpart = 'user' if entity == 'item' else 'item'
    return list(df[[entity, counterpart, 'rating']].itertuples(index=False, name=None))


def _check_id(value, name):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        if isinstance(value, numbers.Real) and math.isfinite(value) and float(value).is_integer():
            value = int(value)
        else:
            raise DataError(f"{name} {value!r} is not an integer")
    if value < 0:
        raise DataError(f"{name} {value} is negative")
    return int(value)


def _validate_triple(triple, scale, dim):
    try:
        entity_id, counterpart_id, rating = triple
    except (TypeError, ValueError):
        raise DataError(f"malformed rating triple {triple!r}") from None
    entity_id = _check_id(entity_id, 'entity id')
    counterpart_id = _check_id(counterpart_id, 'counterpart id')
    if dim is not None and counterpart_id >= dim:
        raise DataError(f"counterpart id {counterpart_id} outside dimension {dim}")
    return entity_id, counterpart_id, scale.normalize(rating)


def build_datasets(
    triples: Iterable,
    scale: Optional[RatingScale] = None,
    train_ratio: float = 0.9,
    rng: Optional[np.random.Generator] = None,
    strict: bool = True,
    dim: Optional[int] = None,
    num_entities: Optional[int] = None,
) -> Tuple[SparseDataset, SparseDataset]:
    """
    Split rating triples into mean-centered train and test sparse datasets.

    Each triple goes to train with probability `train_ratio`, independently of
    every other triple. Per-entity means are computed from train values only and
    subtracted from both splits.

    Args:
        triples: Iterable of (entity_id, counterpart_id, raw_rating)
        scale: Raw rating range, rescaled to [-1, 1]
        train_ratio: Probability of routing a triple to the train split
        rng: Random generator driving the split
        strict: Raise on the first invalid record instead of dropping it
        dim: Number of counterparts, inferred from the data when None
        num_entities: Size of the entity id domain, inferred when None

    Returns:
        Tuple of (train_dataset, test_dataset)
    """
    if not 0.0 < train_ratio <= 1.0:
        raise ConfigError(f"train_ratio must be in (0, 1], got {train_ratio}")
    scale = scale or RatingScale()
    rng = rng if rng is not None else np.random.default_rng()

    records = []
    seen = set()
    dropped = 0
    for triple in triples:
        try:
            entity_id, counterpart_id, value = _validate_triple(triple, scale, dim)
            if (entity_id, counterpart_id) in seen:
                raise DataError(f"duplicate rating for entity {entity_id}, counterpart {counterpart_id}")
        except DataError as e:
            if strict:
                raise
            dropped += 1
            logger.warning(f"Dropping record {triple!r}: {e}")
            continue
        seen.add((entity_id, counterpart_id))
        records.append((entity_id, counterpart_id, value))

    if dropped:
        logger.warning(f"Dropped {dropped} invalid rating records")

    if dim is None:
        dim = max((c for _, c, _ in records), default=-1) + 1
    if num_entities is None:
        num_entities = max((e for e, _, _ in records), default=-1) + 1
    elif records and max(e for e, _, _ in records) >= num_entities:
        raise DataError(f"entity id outside domain of {num_entities} entities")

    train = SparseDataset(dim, num_entities)
    test = SparseDataset(dim, num_entities)
    to_train = rng.random(len(records)) < train_ratio
    for (entity_id, counterpart_id, value), is_train in zip(records, to_train):
        target = train if is_train else test
        target.append(entity_id, counterpart_id, value)

    train.build()
    test.build()

    means = train.entity_means()
    train.center(means)
    test.center(means)

    train.finalize()
    test.finalize()

    logger.info(f"Built datasets: train {train.nnz()} ratings over {len(train)} entities, "
                f"test {test.nnz()} ratings over {len(test)} entities, dim {dim}")
    return train, test
