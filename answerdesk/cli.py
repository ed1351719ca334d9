#!/usr/bin/env python3
# answerdesk/cli.py
"""
answerdesk CLI

Commands:
    search          - Run the FAQ-first / review-fallback search for a query
    answer          - Single best passage (FAQ boosted)
    ingest          - Ingest a page URL or a sitemap
    ingest-reviews  - Load reviews from a JSON file (stored without embeddings)
    config          - Print the effective ranking config
"""
import argparse
import json
import sys
from dataclasses import asdict

from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.errors import AnswerDeskError


def _dump(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def cmd_search(args):
    from answerdesk.main import get_service

    svc = get_service()
    _dump(svc.search(args.query, top_k=args.top_k, show_reviews=args.reviews, debug=args.debug))


def cmd_answer(args):
    from answerdesk.main import get_service

    _dump(get_service().answer(args.query, debug=args.debug))


def cmd_ingest(args):
    from answerdesk.ingest import Ingestor
    from answerdesk.main import get_service

    svc = get_service()
    ingestor = Ingestor(store=svc.store, embed_fn=svc.embed_fn)
    if args.sitemap:
        results = ingestor.ingest_sitemap(args.target, limit=args.limit)
        _dump([r.to_dict() for r in results])
    else:
        _dump(ingestor.ingest_url(args.target).to_dict())


def cmd_ingest_reviews(args):
    from answerdesk.ingest import Ingestor
    from answerdesk.main import get_service

    with open(args.file, encoding="utf-8") as fh:
        reviews = json.load(fh)
    if not isinstance(reviews, list):
        print("[INGEST] reviews file must hold a JSON list")
        return 1

    svc = get_service()
    ingestor = Ingestor(store=svc.store, embed_fn=svc.embed_fn)
    ok = 0
    for i, review in enumerate(reviews):
        url = review.get("url") or f"{args.base_url}#review-{i}"
        res = ingestor.ingest_review(url, review, embed=args.embed)
        ok += 1 if res.ok else 0
    print(f"[INGEST] stored {ok}/{len(reviews)} reviews")


def cmd_config(args):
    cfg = RankingConfig.from_yaml(args.file) if args.file else RankingConfig.from_env()
    _dump(asdict(cfg))


def main():
    parser = argparse.ArgumentParser(description="answerdesk search, ingestion and config CLI")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    search_parser = subparsers.add_parser("search", help="FAQ-first search with review fallback")
    search_parser.add_argument("query", help="Customer question")
    search_parser.add_argument("-k", "--top-k", type=int, default=None, help="Nearest neighbours to fetch")
    search_parser.add_argument("--reviews", action="store_true", help="Skip FAQs, search reviews only")
    search_parser.add_argument("--debug", action="store_true", help="Include debug block, raise upstream errors")

    answer_parser = subparsers.add_parser("answer", help="Single best passage")
    answer_parser.add_argument("query", help="Customer question")
    answer_parser.add_argument("--debug", action="store_true")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a page or sitemap")
    ingest_parser.add_argument("target", help="Page URL (or sitemap URL with --sitemap)")
    ingest_parser.add_argument("--sitemap", action="store_true", help="Treat target as a sitemap")
    ingest_parser.add_argument("-n", "--limit", type=int, default=50, help="Max sitemap URLs")

    reviews_parser = subparsers.add_parser("ingest-reviews", help="Load reviews from JSON")
    reviews_parser.add_argument("file", help="JSON list of {reviewer, rating, date, text[, url]}")
    reviews_parser.add_argument("--base-url", default="google-review:reviews", help="URL prefix for reviews")
    reviews_parser.add_argument("--embed", action="store_true", help="Also embed review chunks")

    config_parser = subparsers.add_parser("config", help="Print effective ranking config")
    config_parser.add_argument("-f", "--file", help="YAML config file (default: environment)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    handlers = {
        "search": cmd_search,
        "answer": cmd_answer,
        "ingest": cmd_ingest,
        "ingest-reviews": cmd_ingest_reviews,
        "config": cmd_config,
    }

    try:
        return handlers[args.command](args) or 0
    except AnswerDeskError as e:
        print(f"[ERR] {type(e).__name__}: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
