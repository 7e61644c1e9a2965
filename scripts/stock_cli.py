#!/usr/bin/env python3
"""
Operator CLI for the stock ledger.

Usage:
  python3 scripts/stock_cli.py [--config PATH] init-db
  python3 scripts/stock_cli.py levels [--location LOC]
  python3 scripts/stock_cli.py low-stock [--location LOC]
  python3 scripts/stock_cli.py movements [--product ID] [--location LOC] [--page N]
  python3 scripts/stock_cli.py export-movements [--output FILE]
  python3 scripts/stock_cli.py adjust PRODUCT LOCATION increase|decrease QTY REASON --actor ID
  python3 scripts/stock_cli.py post-grn GRN_ID --actor ID
  python3 scripts/stock_cli.py verify

The database comes from the config file, STOCK_LEDGER_DATABASE_URL, or the
default SQLite file.
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 80


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Inspect and operate the stock ledger")
    p.add_argument("--config", help="YAML config file (stock_ledger: section optional)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables (and PostgreSQL triggers)")

    for name in ("levels", "low-stock"):
        cmd = sub.add_parser(name)
        cmd.add_argument("--location")

    movements = sub.add_parser("movements", help="Movement history, newest first")
    movements.add_argument("--product", type=UUID)
    movements.add_argument("--location")
    movements.add_argument("--page", type=int, default=1)

    export = sub.add_parser("export-movements", help="Write movement history as CSV")
    export.add_argument("--output", help="File to write (default: stdout)")

    adjust = sub.add_parser("adjust", help="Manual stock adjustment")
    adjust.add_argument("product", type=UUID)
    adjust.add_argument("location")
    adjust.add_argument("direction", choices=("increase", "decrease"))
    adjust.add_argument("quantity", type=int)
    adjust.add_argument("reason")
    adjust.add_argument("--actor", type=UUID, required=True)

    post = sub.add_parser("post-grn", help="Post a draft goods received note")
    post.add_argument("grn_id", type=UUID)
    post.add_argument("--actor", type=UUID, required=True)

    sub.add_parser("verify", help="Reconcile stored balances with the movement ledger")
    return p.parse_args(argv)


def _print_levels(levels) -> None:
    print(f"  {'Product':<38} {'Location':<20} {'On hand':>8} {'Rsvd':>6} {'Avail':>6}")
    print(f"  {'-'*38} {'-'*20} {'-'*8} {'-'*6} {'-'*6}")
    for level in levels:
        print(
            f"  {str(level.product_id):<38} {level.location[:20]:<20} "
            f"{level.quantity_on_hand:>8} {level.quantity_reserved:>6} {level.quantity_available:>6}"
        )


def main(argv: list[str] | None = None) -> int:
    from stock_kernel.config import load_config
    from stock_kernel.db.engine import build_engine, create_tables
    from stock_kernel.domain.dtos import MovementFilter
    from stock_kernel.exceptions import StockKernelError
    from stock_kernel.ledger import StockLedger
    from stock_kernel.logging_config import configure_logging

    args = _parse_args(argv)
    configure_logging()
    config = load_config(args.config)

    if args.command == "init-db":
        create_tables(build_engine(config.database_url, echo=config.echo_sql))
        print(f"  Tables created on {config.database_url}")
        return 0

    ledger = StockLedger.from_config(config)

    try:
        if args.command == "levels":
            with ledger.read() as reader:
                page = reader.stock.list_levels(location=args.location, page_size=config.max_page_size)
                _print_levels(page.items)
                print(f"\n  {page.total} stock line(s)")
        elif args.command == "low-stock":
            with ledger.read() as reader:
                _print_levels(reader.stock.low_stock(args.location))
        elif args.command == "movements":
            criteria = MovementFilter(product_id=args.product, location=args.location)
            with ledger.read() as reader:
                page = reader.movements.history(criteria, page=args.page)
            print("=" * W)
            for m in page.items:
                print(
                    f"  #{m.seq:<6} {m.created_at:%Y-%m-%d %H:%M}  {m.movement_type.value:<20} "
                    f"{m.signed_quantity:>+7}  {m.location[:18]:<18} {m.reference_number or ''}"
                )
            print("=" * W)
            print(f"  page {page.page} of {page.total_pages} ({page.total} movements)")
        elif args.command == "export-movements":
            with ledger.read() as reader:
                if args.output:
                    with open(args.output, "w", newline="", encoding="utf-8") as fh:
                        reader.movements.export_csv(stream=fh)
                else:
                    reader.movements.export_csv(stream=sys.stdout)
        elif args.command == "adjust":
            result = ledger.adjust_stock(
                args.product,
                args.location,
                args.direction,
                args.quantity,
                args.reason,
                actor_id=args.actor,
            )
            level = result.stock_level
            print(
                f"  {result.movement.movement_type.value} {args.quantity}: "
                f"on hand {level.quantity_on_hand}, available {level.quantity_available}"
            )
        elif args.command == "post-grn":
            result = ledger.post_grn(args.grn_id, actor_id=args.actor)
            print(f"  {result.grn.grn_number} posted: {len(result.movements)} receipt(s)")
        elif args.command == "verify":
            with ledger.read() as reader:
                discrepancies = reader.movements.verify_balances()
            if not discrepancies:
                print("  All stock levels reconcile with the movement ledger.")
                return 0
            for d in discrepancies:
                print(
                    f"  {d.product_id} @ {d.location}: stored {d.stored_on_hand}, "
                    f"ledger {d.ledger_on_hand} (diff {d.difference:+})"
                )
            return 2
    except StockKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
