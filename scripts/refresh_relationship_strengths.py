from __future__ import annotations

import argparse

from relgraph.core.config import get_settings
from relgraph.db.pg.session import Database
from relgraph.services.scoring.snapshots import refresh_all_relationship_strengths, refresh_relationship_strength


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute cached relationship strength snapshots.")
    parser.add_argument("--person-id", default=None, help="Refresh a single person instead of everyone.")
    args = parser.parse_args()

    database = Database.from_settings(get_settings())
    try:
        with database.session_scope() as db:
            if args.person_id:
                report = refresh_relationship_strength(db, args.person_id)
                if report.strength is None:
                    print(f"No interactions for {args.person_id}")
                else:
                    print(f"{args.person_id}: strength={report.strength:.4f} trend={report.trend}")
                return
            counts = refresh_all_relationship_strengths(db)
    finally:
        database.dispose()
    print(f"updated={counts['updated']} skipped={counts['skipped']} errors={counts['errors']}")


if __name__ == "__main__":
    main()
