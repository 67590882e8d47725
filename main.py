"""CLI entrypoint for the feature request triage pipeline."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from config import list_available_products, load_product_config
from errors import ConfigError
from llm_client import CompletionClient, build_provider
from models import TriageResult
from notion_client import NotionStore
from orchestrator import RunOptions, TriageOrchestrator
from slack_notifier import SlackNotifier


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Triage unprocessed feature requests against a product")
    parser.add_argument("-p", "--product", default=os.getenv("TRIAGE_PRODUCT"), help="Product config name, or 'all'")
    parser.add_argument("--dry-run", action="store_true", help="No writes at all: no audit page, no FR updates")
    parser.add_argument(
        "--write-audit",
        action="store_true",
        help="With --dry-run, still write the audit page (FR relations stay untouched)",
    )
    parser.add_argument(
        "--backtest",
        action="store_true",
        help="Re-process the last --backtest-days of FRs regardless of status (implies --dry-run --write-audit)",
    )
    parser.add_argument("--backtest-days", type=int, default=7, help="Days to look back in backtest mode")
    parser.add_argument("--test-slack", action="store_true", help="Send Slack messages even in dry-run mode")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--list-products", action="store_true", help="List product configs and exit")
    args = parser.parse_args(argv)

    args.verbose = args.verbose or _env_flag("VERBOSE")
    args.backtest = args.backtest or _env_flag("BACKTEST")
    args.dry_run = args.backtest or args.dry_run or _env_flag("DRY_RUN")
    args.write_audit = args.backtest or args.write_audit
    if not args.product and not args.list_products:
        parser.error("--product is required (or set TRIAGE_PRODUCT)")
    return args


def run_product(name: str, args: argparse.Namespace) -> TriageResult:
    """Load one product's config, wire its collaborators and run triage."""
    config = load_product_config(name)

    notion_api_key = os.getenv("NOTION_API_KEY")
    if not notion_api_key:
        raise ConfigError("NOTION_API_KEY environment variable is required")
    fr_database_id = os.getenv("FR_DATABASE_ID")
    if not fr_database_id:
        raise ConfigError("FR_DATABASE_ID environment variable is required")

    provider = build_provider(
        os.getenv("LLM_PROVIDER") or config.llm_provider or "anthropic",
        os.getenv("LLM_MODEL") or config.llm_model,
    )
    store = NotionStore(notion_api_key, dry_run=args.dry_run and not args.write_audit)
    notifier = SlackNotifier(
        os.getenv("SLACK_BOT_TOKEN"),
        config.slack,
        dry_run=args.dry_run and not args.test_slack,
    )
    orchestrator = TriageOrchestrator(
        config,
        store,
        CompletionClient(provider),
        notifier,
        RunOptions(
            fr_database_id=fr_database_id,
            dry_run=args.dry_run,
            backtest=args.backtest,
            backtest_days=args.backtest_days,
        ),
    )
    try:
        return orchestrator.run()
    except Exception as exc:
        notifier.send_error(f"Triage failed for {name}: {exc}")
        raise


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute the pipeline for one or all products."""
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if args.list_products:
        print("Available products:")
        for product in list_available_products():
            print(f"  - {product}")
        return 0

    if args.backtest:
        logging.info("BACKTEST MODE: re-processing last %s days of FRs (dry-run enforced)", args.backtest_days)

    names = list_available_products() if args.product == "all" else [args.product]
    exit_code = 0
    for name in names:
        logging.info("=" * 60)
        logging.info("Starting triage for product: %s", name)
        logging.info("=" * 60)
        try:
            result = run_product(name, args)
        except Exception as exc:
            logging.exception("Triage failed for %s: %s", name, exc)
            exit_code = 1
            continue

        if result.status == "complete":
            logging.info("Triage complete for %s. Processed %s FRs.", name, result.fr_count)
        elif result.status == "no_frs":
            logging.info("No eligible FRs for %s.", name)
        else:
            logging.warning("Triage completed with errors for %s.", name)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
