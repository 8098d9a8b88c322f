from __future__ import annotations

import argparse
import json

from relgraph.core.config import get_settings
from relgraph.db.pg.session import Database
from relgraph.services.matching.apply import apply_domain_matches


def main() -> None:
    parser = argparse.ArgumentParser(description="Match organizations without a domain to sender e-mail domains.")
    parser.add_argument("--apply", action="store_true", help="Write auto-applicable domains. Default is a dry run.")
    parser.add_argument("--limit", type=int, default=None, help="Only scan this many organizations.")
    args = parser.parse_args()

    database = Database.from_settings(get_settings())
    try:
        with database.session_scope() as db:
            report = apply_domain_matches(db, dry_run=not args.apply, limit=args.limit)
    finally:
        database.dispose()

    print(f"Scanned {report['organizations_scanned']} organizations")
    for entry in report["found"]:
        marker = "applied" if entry["applied"] else "match"
        print(f"  [{marker}] {entry['name']} -> {entry['domain']} ({entry['score']:.2f}, {entry['match_type']})")
    if report["low_confidence"]:
        print("Needs review:")
        print(json.dumps(report["low_confidence"], indent=2))
    print(
        f"applied={report['applied']} skipped_domain_taken={report['skipped_domain_taken']} "
        f"not_found={report['not_found']}"
    )


if __name__ == "__main__":
    main()
