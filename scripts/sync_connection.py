from __future__ import annotations

import argparse
from datetime import datetime

from relgraph.core.config import get_settings
from relgraph.db.pg.session import Database
from relgraph.services.sync.coordinator import run_sync


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one incremental sync for a provider connection.")
    parser.add_argument("connection_id")
    parser.add_argument("--max-items", type=int, default=None)
    parser.add_argument("--from-date", type=datetime.fromisoformat, default=None, help="ISO timestamp to replay from.")
    args = parser.parse_args()

    database = Database.from_settings(get_settings())
    try:
        with database.session_scope() as db:
            result = run_sync(db, args.connection_id, max_items=args.max_items, from_date=args.from_date)
    finally:
        database.dispose()

    print(
        f"{result.state}: fetched={result.fetched} created={result.created} updated={result.updated} "
        f"skipped={result.skipped} retried={result.retried} errors={len(result.errors)}"
    )
    for error in result.errors:
        print(f"  {error.label}: {error.kind} {error.message}")
    if result.error:
        print(f"aborted: {result.error}")
    print(f"cursor: {result.cursor_before} -> {result.cursor_after}")


if __name__ == "__main__":
    main()
