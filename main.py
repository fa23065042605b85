"""
Main entrypoint: one reconciliation pass, cache statistics, vote cost maintenance.

    python main.py run [--start-epoch N] [--end-epoch N] [--no-cache] [--only rewards,mev]
    python main.py stats
    python main.py estimate-vote-costs --start-epoch N [--end-epoch N]
    python main.py import-vote-costs path/to/export.json [--source-tag secondary]

Env: VALIDATOR_* addresses and parameters, SOLANA_RPC_URL or HELIUS_API_KEY,
DUNE_API_KEY (optional secondary source), LEDGER_DB_PATH. See validator_ledger.config.
"""

from __future__ import annotations

import argparse
import json
import sys

# Configure structured logging before other imports that may log
from validator_ledger.ledger_logging import get_logger

logger = get_logger("main")


def _cmd_run(args: argparse.Namespace) -> int:
    from validator_ledger.config import get_settings
    from validator_ledger.config.env import print_ledger_startup
    from validator_ledger.database import FactKind, get_ledger_store
    from validator_ledger.reconcile.runner import build_sources, run_reconciliation

    print_ledger_startup("run")
    settings = get_settings()
    store = get_ledger_store(settings.db_path)
    kinds = [FactKind(k.strip()) for k in args.only.split(",")] if args.only else None
    sources = build_sources(settings)
    try:
        report = run_reconciliation(
            settings,
            store,
            sources,
            start_epoch=args.start_epoch,
            end_epoch=args.end_epoch,
            no_cache=args.no_cache,
            kinds=kinds,
            include_transfers=not args.skip_transfers,
        )
    finally:
        sources.close()
    print(json.dumps(report.summary(), indent=2, default=str))
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    from validator_ledger.config.env import get_db_path
    from validator_ledger.database import get_ledger_store

    stats = get_ledger_store(get_db_path()).stats()
    print(
        json.dumps(
            {
                "facts": stats.facts,
                "negatives": stats.negatives,
                "transfers": stats.transfers,
                "cursors": stats.cursors,
            },
            indent=2,
        )
    )
    return 0


def _cmd_estimate(args: argparse.Namespace) -> int:
    from validator_ledger.config.env import get_db_path, get_rpc_url
    from validator_ledger.database import get_ledger_store
    from validator_ledger.reconcile.vote_costs import estimate_vote_costs
    from validator_ledger.sources.solana_rpc import SolanaRpcClient

    rpc = SolanaRpcClient(get_rpc_url())
    try:
        current_epoch = rpc.get_current_epoch()
    finally:
        rpc.close()
    end = args.end_epoch if args.end_epoch is not None else current_epoch - 1
    written = estimate_vote_costs(
        get_ledger_store(get_db_path()), args.start_epoch, end, current_epoch=current_epoch
    )
    print(f"estimated {len(written)} epochs")
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    from validator_ledger.config.env import get_db_path, get_rpc_url
    from validator_ledger.database import SourceTag, get_ledger_store
    from validator_ledger.reconcile.vote_costs import import_vote_costs
    from validator_ledger.sources.solana_rpc import SolanaRpcClient

    rpc = SolanaRpcClient(get_rpc_url())
    try:
        current_epoch = rpc.get_current_epoch()
    finally:
        rpc.close()
    written = import_vote_costs(
        get_ledger_store(get_db_path()),
        args.path,
        current_epoch=current_epoch,
        source_tag=SourceTag(args.source_tag),
    )
    print(f"imported {written} epochs")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validator ledger reconciliation")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Reconcile facts and transfers")
    run.add_argument("--start-epoch", type=int, default=None)
    run.add_argument("--end-epoch", type=int, default=None)
    run.add_argument("--no-cache", action="store_true", help="Refetch every completed epoch")
    run.add_argument("--only", default="", help="Comma-separated fact kinds (rewards,leader_fees,mev,vote_costs)")
    run.add_argument("--skip-transfers", action="store_true")
    run.set_defaults(func=_cmd_run)

    stats = sub.add_parser("stats", help="Show cache statistics")
    stats.set_defaults(func=_cmd_stats)

    est = sub.add_parser("estimate-vote-costs", help="Persist estimated vote costs for unchecked epochs")
    est.add_argument("--start-epoch", type=int, required=True)
    est.add_argument("--end-epoch", type=int, default=None)
    est.set_defaults(func=_cmd_estimate)

    imp = sub.add_parser("import-vote-costs", help="Import vote costs from a JSON export")
    imp.add_argument("path")
    imp.add_argument("--source-tag", default="secondary", choices=["primary", "secondary", "estimated"])
    imp.set_defaults(func=_cmd_import)
    return parser


def main(argv: list[str] | None = None) -> int:
    from validator_ledger.core.exceptions import LedgerError

    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except LedgerError as e:
        logger.error("main_failed", command=args.command, error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
