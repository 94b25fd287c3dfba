"""Ledger consistency job.

Intended for cron (e.g. nightly). Replays every part's ledger, compares the
result with the materialised balance and the `balance_after` snapshots, and
logs any drift. It never repairs anything; fixes are compensating entries
recorded by a person.
"""

from __future__ import annotations

import logging
import os

from partsdb.database import ReadSessionLocal
from partsdb.apps.inventory import services as inventory_services

logger = logging.getLogger(__name__)


def run(tenant_id: str | None = None) -> dict:
    """Execute the check and return a summary dict."""
    db = ReadSessionLocal()
    try:
        reports = inventory_services.verify_all_balances(db, tenant_id=tenant_id)
    finally:
        db.close()

    drifted = [r for r in reports if not r.consistent]
    summary = {
        "checked": len(reports),
        "drifted": len(drifted),
        "drifted_keys": [f"{r.tenant_id}:{r.part_id}" for r in drifted],
    }
    if drifted:
        logger.warning("Ledger consistency check found drift", extra=summary)
    else:
        logger.info("Ledger consistency check passed", extra={"checked": len(reports)})
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    result = run(os.getenv("PARTSDB_TENANT_ID") or None)
    print("Ledger consistency check completed:", result)
