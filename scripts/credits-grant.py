#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from datetime import datetime
from uuid import UUID

from credits.ledger import CreditLedger
from db.session import SessionLocal


def main() -> None:
    parser = ArgumentParser(description="Grant credits to a user (admin)")
    parser.add_argument("user_id", type=UUID)
    parser.add_argument("amount", type=int)
    parser.add_argument("--type", dest="credit_type", choices=["free", "subscription", "pack"], default="pack")
    parser.add_argument("--expires-at", type=datetime.fromisoformat, default=None)
    parser.add_argument("--description", default="Manual grant")
    parser.add_argument("--show", action="store_true", help="Print balances after the grant")
    args = parser.parse_args()

    ledger = CreditLedger(SessionLocal)
    balance = ledger.grant(
        args.user_id,
        args.credit_type,
        args.amount,
        args.expires_at,
        "admin",
        description=args.description,
    )
    print(f"[grant] user={args.user_id} type={args.credit_type} amount={args.amount} balance={balance}")
    if args.show:
        for view in ledger.get_balances(args.user_id):
            print(
                f"[balance] type={view.credit_type} balance={view.balance} "
                f"effective={view.effective_balance} expires_at={view.expires_at}"
            )


if __name__ == "__main__":
    main()
