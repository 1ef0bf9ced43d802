import argparse
import math

import matplotlib.pyplot as plt
import numpy as np

from autorec import AutoRec
from config import TrainingConfig, get_config, load_config_yaml
from hpo import run
from preprocessing import build_datasets, device, read_ratings, to_triples
from utils import AutoRecPredictor, EarlyStopping, display_recommendations, train_autoencoder


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Train a sparse denoising AutoRec on a rating log")
    p.add_argument("ratings", help="Delimiter-separated rating log: user, item, rating[, timestamp]")
    p.add_argument("--sep", default=",", help="Column delimiter, e.g. '::' for MovieLens-1M")
    p.add_argument("--header", action="store_true", help="The rating log has a header line")
    p.add_argument("--config", default=None, help="YAML config; the pickled config manager is used otherwise")
    p.add_argument("--entity", choices=("item", "user"), default=None, help="Which vectors to autoencode")
    p.add_argument("--epochs", type=int, default=None)
    p.add_argument("--hpo", type=int, default=0, metavar="N", help="Run N optuna trials before training")
    p.add_argument("--plot", action="store_true", help="Plot train loss and test RMSE per epoch")
    p.add_argument("--entity-id", type=int, default=None, help="Encoded entity id to recommend for")
    p.add_argument("--top-k", type=int, default=5)
    return p


def load_training_config(args) -> TrainingConfig:
    raw = load_config_yaml(args.config) if args.config else get_config()
    config = TrainingConfig.from_dict(raw)
    overrides = {}
    if args.entity is not None:
        overrides['entity'] = args.entity
    if args.epochs is not None:
        overrides['epochs'] = args.epochs
    return config.replace(**overrides) if overrides else config


def plot_history(session):
    epochs = range(1, len(session.train_loss) + 1)
    rmse = [r if r is not None else math.nan for r in session.test_rmse]
    plt.figure(figsize=(8, 6))
    plt.plot(epochs, session.train_loss, label='Train Loss')
    plt.plot(epochs, rmse, '-o', label='Test RMSE')
    plt.xlabel('Epoch')
    plt.legend()
    plt.title('Training Loss and Test RMSE over Epochs')
    plt.show()


def auto_rec_runner(argv=None):
    """
    Main execution function: read ratings, build sparse splits, optionally run
    the hyperparameter search, train, and print the RMSE history.
    """
    args = build_arg_parser().parse_args(argv)
    config = load_training_config(args)
    print(f"Runnable Configs: {config}")

    df, num_users, num_items = read_ratings(args.ratings, sep=args.sep, header=0 if args.header else None)
    num_entities, dim = (num_items, num_users) if config.entity == 'item' else (num_users, num_items)
    train, test = build_datasets(
        to_triples(df, config.entity),
        scale=config.scale(),
        train_ratio=config.train_ratio,
        rng=np.random.default_rng(config.seed),
        strict=config.strict,
        dim=dim,
        num_entities=num_entities,
    )
    print(f"train: {train}\ntest: {test}")

    if args.hpo > 0:
        best_params = run(train, test, base_config=config, n_trials=args.hpo)
        config = config.replace(**best_params)
        print(f"Optimized Configs: {config}")

    net = AutoRec.from_config(config, train.dim).to(device)
    print(net)

    session = train_autoencoder(
        net, train, test, config,
        early_stopping=EarlyStopping(patience=config.early_stopping_patience, min_delta=1e-4),
    )

    if args.plot:
        plot_history(session)

    if args.entity_id is not None:
        predictor = AutoRecPredictor(net, train, config.scale())
        recommendations = predictor.recommend(args.entity_id, top_k=args.top_k)
        display_recommendations(recommendations, f"{config.entity.capitalize()} {args.entity_id}")

    return session


if __name__ == '__main__':
    auto_rec_runner()
