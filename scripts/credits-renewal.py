#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import time

from core.logging import setup_logging
from credits.ledger import CreditLedger
from credits.renewal import renew_free_credits
from db.session import SessionLocal


logger = logging.getLogger("scripts.credits_renewal")


def main() -> None:
    parser = ArgumentParser(description="Renew expired monthly free credits")
    parser.add_argument("--loop", action="store_true", help="Keep running, one sweep per interval")
    parser.add_argument("--interval-s", type=int, default=3600)
    args = parser.parse_args()

    setup_logging("scriptfactory-renewal")
    ledger = CreditLedger(SessionLocal)

    while True:
        try:
            summary = renew_free_credits(ledger, SessionLocal)
            print(
                f"[renewal] renewed={summary.renewed} initialized={summary.initialized} "
                f"withheld={summary.withheld} skipped={summary.skipped} failed={summary.failed}"
            )
        except Exception:
            if not args.loop:
                raise
            logger.exception("Renewal sweep failed; retrying next interval")
        if not args.loop:
            return
        time.sleep(max(1, args.interval_s))


if __name__ == "__main__":
    main()
