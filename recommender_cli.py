"""
recommender_cli.py
==================
Command line access to the offline parts of the suggestion service:

* ``evaluate`` – learning curve of a recommender on a corpus file
* ``sync`` – one synchronization pass of a corpus against a remote recommender

Both commands read a corpus JSON file (see ``suggestion_service.corpus``).
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from config_manager import get_evaluation_config, get_external_config
from suggestion_service import (
    InMemoryAnnotationStorage,
    RecommendationError,
    RecommendationService,
    ServiceConfig,
)
from suggestion_service.corpus import Corpus, load_corpus
from suggestion_service.evaluation import EvaluationConfig
from suggestion_service.external import DatasetSynchronizer, ExternalRecommenderClient
from suggestion_service.logging_config import get_logger, setup_logging, stop_logging
from suggestion_service.models import Recommender
from suggestion_service.recommenders import build_default_registry, to_external_document

_LOG = get_logger("recommender_cli")


def _parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Evaluate recommenders and synchronize remote datasets from a corpus file.",
        epilog="""
Examples:
  Learning curve of the first string-matching recommender:
    %(prog)s evaluate corpus.json

  Learning curve with a custom split:
    %(prog)s evaluate corpus.json --recommender 2 --train-fraction 0.7 --step 5 --shuffle

  Synchronize the corpus into a remote dataset:
    %(prog)s sync corpus.json --url http://localhost:5000 --dataset ner-demo
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = p.add_subparsers(dest="command", required=True)

    ev = sub.add_parser("evaluate", help="Run an incremental learning-curve evaluation")
    ev.add_argument("corpus", type=Path, help="Corpus JSON file")
    ev.add_argument("--recommender", type=int, help="Recommender id (default: first one supporting evaluation)")
    ev.add_argument("--train-fraction", type=float, help="Share of samples used for training")
    ev.add_argument("--step", type=float, help="Train size increment (value < 1 = fraction of train capacity)")
    ev.add_argument("--min-samples", type=int, help="Train size of the first step")
    ev.add_argument("--shuffle", action="store_true", help="Shuffle samples before splitting")
    ev.add_argument("--seed", type=int, help="Shuffle seed")
    ev.add_argument("--ignore-label", help="Label excluded from the metrics, e.g. O")
    ev.add_argument("--output", type=Path, help="Write results as JSON to this file")

    sy = sub.add_parser("sync", help="Synchronize the corpus with a remote recommender dataset")
    sy.add_argument("corpus", type=Path, help="Corpus JSON file")
    sy.add_argument("--recommender", type=int, help="Recommender id (default: first external one)")
    sy.add_argument("--url", help="Remote recommender URL (default: the recommender's remote_url trait)")
    sy.add_argument("--dataset", help="Remote dataset name (default: the recommender's dataset)")
    return p.parse_args(argv)


def _build_service(corpus: Corpus) -> RecommendationService:
    storage = InMemoryAnnotationStorage()
    corpus.populate(storage)
    external = get_external_config()
    service = RecommendationService(
        storage,
        build_default_registry(external.connect_timeout, external.read_timeout, external.verify_ssl),
        config=ServiceConfig(max_workers=1),
    )
    for recommender in corpus.recommenders:
        service.register_recommender(recommender)
    return service


def _pick_recommender(corpus: Corpus, recommender_id: Optional[int], tool: Optional[str]) -> Recommender:
    for recommender in corpus.recommenders:
        if recommender_id is not None and recommender.id == recommender_id:
            return recommender
        if recommender_id is None and (tool is None or recommender.tool == tool):
            return recommender
    wanted = f"id {recommender_id}" if recommender_id is not None else f"tool [{tool}]"
    raise SystemExit(f"No recommender with {wanted} in corpus [{corpus.project}]")


def _evaluation_config(args: argparse.Namespace) -> EvaluationConfig:
    defaults = get_evaluation_config()
    step = args.step if args.step is not None else defaults.step
    if step >= 1:
        step = int(step)
    return EvaluationConfig(
        train_fraction=args.train_fraction if args.train_fraction is not None else defaults.train_fraction,
        step=step,
        min_samples=args.min_samples if args.min_samples is not None else defaults.min_samples,
        shuffle=args.shuffle or defaults.shuffle,
        seed=args.seed if args.seed is not None else defaults.seed,
        ignore_label=args.ignore_label,
    )


def run_evaluate(args: argparse.Namespace) -> int:
    corpus = load_corpus(args.corpus)
    recommender = _pick_recommender(corpus, args.recommender, None if args.recommender is not None else "string-matching")
    service = _build_service(corpus)
    try:
        samples = corpus.samples(recommender.layer_id, recommender.feature)
        run = service.evaluate(recommender.id, samples, _evaluation_config(args))
        if run.is_skipped:
            _LOG.info(f"ℹ️  Evaluation skipped: {run.skipped}")
            print(f"Evaluation skipped: {run.skipped}")
            return 0

        results = []
        for result in tqdm(run, desc=f"Evaluating {recommender.name}", unit="step"):
            results.append(result)
    finally:
        service.shutdown()

    print(f"{'step':>4}  {'train':>6}  {'test':>5}  {'acc':>6}  {'f1':>6}")
    for result in results:
        print(
            f"{result.iteration:>4}  {result.train_size:>6}  {result.test_size:>5}  "
            f"{result.accuracy:>6.3f}  {result.f1:>6.3f}"
        )

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump([r.to_dict() for r in results], f, indent=2, ensure_ascii=False)
        _LOG.info(f"💾  Wrote {len(results)} results to {args.output}")
    return 0


def run_sync(args: argparse.Namespace) -> int:
    corpus = load_corpus(args.corpus)
    recommender = _pick_recommender(corpus, args.recommender, None if args.recommender is not None else "external")
    url = args.url or recommender.traits.get("remote_url")
    if not url:
        raise SystemExit("No remote URL given and the recommender has no remote_url trait")
    dataset = args.dataset or recommender.traits.get("dataset") or f"{recommender.project}-{recommender.id}"

    service = _build_service(corpus)
    external = get_external_config()
    client = ExternalRecommenderClient(
        url,
        connect_timeout=external.connect_timeout,
        read_timeout=external.read_timeout,
        verify_ssl=external.verify_ssl,
    )
    try:
        layer = recommender.layer_name or str(recommender.layer_id)
        payloads = {
            state.snapshot.name: to_external_document(state.snapshot, layer, recommender.feature)
            for state in service.load_documents(recommender, corpus.user)
        }
        report = DatasetSynchronizer(client).synchronize(dataset, payloads)
    finally:
        client.close()
        service.shutdown()

    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 0 if report.ok else 1


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.debug)
    try:
        if args.command == "evaluate":
            return run_evaluate(args)
        return run_sync(args)
    except RecommendationError as e:
        _LOG.error(f"💥  {e}")
        return 1
    finally:
        stop_logging()


if __name__ == "__main__":  # pragma: no cover
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _LOG.info("🛑  Process interrupted by user.")
        stop_logging()
        sys.exit(130)
