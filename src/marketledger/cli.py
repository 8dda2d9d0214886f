"""Market ledger CLI: command-line interface over a persisted ledger.

Usage:
    python -m marketledger.cli status
    python -m marketledger.cli deposit --account 0xalice --amount 1000000
    python -m marketledger.cli list --caller 0xalice --uri ipfs://meta --price 500
    python -m marketledger.cli purchase --caller 0xbob --id 1
    python -m marketledger.cli resell --caller 0xbob --id 1 --price 750
    python -m marketledger.cli cancel --caller 0xbob --id 1
    python -m marketledger.cli active
    python -m marketledger.cli check-invariants

State lives in ``<data-dir>/state.json`` and the audit trail in
``<data-dir>/events.jsonl``.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from marketledger.config import MarketConfig
from marketledger.logging_config import bind_context, clear_context, configure_logging
from marketledger.models.market import MarketRecord
from marketledger.persistence.event_log import EventLog
from marketledger.persistence.state_store import StateStore
from marketledger.service import MarketService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"


def _make_service(config_dir: Path, data_dir: Optional[Path] = None) -> MarketService:
    """Create a MarketService with durable persistence."""
    config = MarketConfig.from_config_dir(config_dir)
    configure_logging(level=config.log_level, json_output=config.log_json)
    data_dir = data_dir or config.data_dir or (config_dir.parent / "data")
    data_dir.mkdir(parents=True, exist_ok=True)
    return MarketService(
        config,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _service(args: argparse.Namespace) -> MarketService:
    return _make_service(args.config, args.data_dir)


def _emit(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed ({result.error_code}): {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _emit_records(records: list[MarketRecord]) -> int:
    print(json.dumps([r.to_dict() for r in records], indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    print(json.dumps(_service(args).status(), indent=2))
    return 0


def cmd_deposit(args: argparse.Namespace) -> int:
    return _emit(_service(args).deposit(args.account, args.amount))


def cmd_list(args: argparse.Namespace) -> int:
    return _emit(_service(args).list_item(args.caller, args.uri, args.price, args.payment))


def cmd_purchase(args: argparse.Namespace) -> int:
    return _emit(_service(args).purchase(args.caller, args.id, args.payment))


def cmd_resell(args: argparse.Namespace) -> int:
    return _emit(_service(args).resell(args.caller, args.id, args.price, args.payment))


def cmd_cancel(args: argparse.Namespace) -> int:
    return _emit(_service(args).cancel(args.caller, args.id))


def cmd_get_fee(args: argparse.Namespace) -> int:
    print(json.dumps({"listing_fee": _service(args).get_listing_fee()}))
    return 0


def cmd_set_fee(args: argparse.Namespace) -> int:
    return _emit(_service(args).set_listing_fee(args.caller, args.fee))


def cmd_active(args: argparse.Namespace) -> int:
    return _emit_records(_service(args).fetch_active_listings())


def cmd_owned(args: argparse.Namespace) -> int:
    return _emit_records(_service(args).fetch_owned(args.caller))


def cmd_listed(args: argparse.Namespace) -> int:
    return _emit_records(_service(args).fetch_listed_by(args.caller))


def cmd_check_invariants(args: argparse.Namespace) -> int:
    errors = _service(args).check_invariants()
    if errors:
        for error in errors:
            print(f"  FAIL: {error}", file=sys.stderr)
        return 1
    print("All ledger invariants hold.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketledger",
        description="Market ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="State directory (default: data_dir from config)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show ledger status")

    p_dep = sub.add_parser("deposit", help="Credit an account")
    p_dep.add_argument("--account", required=True)
    p_dep.add_argument("--amount", type=int, required=True)

    p_list = sub.add_parser("list", help="List a new item")
    p_list.add_argument("--caller", required=True, help="Seller account")
    p_list.add_argument("--uri", required=True, help="Metadata URI (stored verbatim)")
    p_list.add_argument("--price", type=int, required=True)
    p_list.add_argument("--payment", type=int, help="Attached payment (default: listing fee)")

    p_buy = sub.add_parser("purchase", help="Purchase an active listing")
    p_buy.add_argument("--caller", required=True, help="Buyer account")
    p_buy.add_argument("--id", type=int, required=True, help="Item ID")
    p_buy.add_argument("--payment", type=int, help="Attached payment (default: asking price)")

    p_resell = sub.add_parser("resell", help="Relist an owned item")
    p_resell.add_argument("--caller", required=True, help="Owner account")
    p_resell.add_argument("--id", type=int, required=True, help="Item ID")
    p_resell.add_argument("--price", type=int, required=True)
    p_resell.add_argument("--payment", type=int, help="Attached payment (default: listing fee)")

    p_cancel = sub.add_parser("cancel", help="Cancel an active listing")
    p_cancel.add_argument("--caller", required=True, help="Seller account")
    p_cancel.add_argument("--id", type=int, required=True, help="Item ID")

    sub.add_parser("get-fee", help="Show the listing fee")

    p_fee = sub.add_parser("set-fee", help="Change the listing fee (admin only)")
    p_fee.add_argument("--caller", required=True, help="Administrator account")
    p_fee.add_argument("--fee", type=int, required=True)

    sub.add_parser("active", help="Show active listings")

    p_owned = sub.add_parser("owned", help="Show items held by an account")
    p_owned.add_argument("--caller", required=True)

    p_listed = sub.add_parser("listed", help="Show an account's active listings")
    p_listed.add_argument("--caller", required=True)

    sub.add_parser("check-invariants", help="Run ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "deposit": cmd_deposit,
        "list": cmd_list,
        "purchase": cmd_purchase,
        "resell": cmd_resell,
        "cancel": cmd_cancel,
        "get-fee": cmd_get_fee,
        "set-fee": cmd_set_fee,
        "active": cmd_active,
        "owned": cmd_owned,
        "listed": cmd_listed,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    bind_context(command=args.command)
    try:
        return handler(args)
    finally:
        clear_context()


if __name__ == "__main__":
    raise SystemExit(main())
