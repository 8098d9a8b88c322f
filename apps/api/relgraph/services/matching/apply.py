from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.db.pg.models import Interaction, Organization, utcnow
from relgraph.services.matching.domains import SenderRecord, auto_applicable, find_domain_candidates

logger = logging.getLogger(__name__)

_SENDER_ROLES = ("from", "attendees")


def load_sender_corpus(db: Session) -> list[SenderRecord]:
    """Distinct (address, display name) pairs seen as senders or meeting attendees."""
    seen: set[tuple[str, str]] = set()
    corpus: list[SenderRecord] = []
    rows = db.scalars(select(Interaction.participants_json).order_by(Interaction.timestamp.asc())).all()
    for participants in rows:
        for role in _SENDER_ROLES:
            for entry in (participants or {}).get(role) or []:
                email = str(entry.get("email") or "").strip().lower()
                name = str(entry.get("name") or "").strip()
                if not email or (email, name) in seen:
                    continue
                seen.add((email, name))
                corpus.append(SenderRecord(from_email=email, from_name=name or None))
    return corpus


def apply_domain_matches(db: Session, *, dry_run: bool = True, limit: int | None = None) -> dict[str, Any]:
    """Attach auto-applicable domains to organizations that have none.

    A domain is written only when no other organization already owns it.
    """
    stmt = select(Organization).where(Organization.domain.is_(None)).order_by(
        Organization.organization_type.asc(), Organization.name.asc()
    )
    if limit:
        stmt = stmt.limit(limit)
    organizations = db.scalars(stmt).all()
    corpus = load_sender_corpus(db)

    found: list[dict[str, Any]] = []
    low_confidence: list[dict[str, Any]] = []
    not_found = 0
    applied = 0
    skipped_taken = 0
    for org in organizations:
        candidates = find_domain_candidates(org.name, corpus)
        best = auto_applicable(candidates)
        if best is None:
            if candidates:
                low_confidence.append(
                    {
                        "organization_id": org.id,
                        "name": org.name,
                        "candidates": [
                            {"domain": c.domain, "score": c.score, "match_type": c.match_type} for c in candidates[:3]
                        ],
                    }
                )
            else:
                not_found += 1
            continue

        entry = {
            "organization_id": org.id,
            "name": org.name,
            "domain": best.domain,
            "score": best.score,
            "match_type": best.match_type,
            "applied": False,
        }
        found.append(entry)
        if dry_run:
            continue
        owner = db.scalar(select(Organization.id).where(Organization.domain == best.domain))
        if owner is not None:
            skipped_taken += 1
            logger.info(
                "domain_match_skipped_domain_taken",
                extra={"organization_id": org.id, "domain": best.domain, "owner_id": owner},
            )
            continue
        org.domain = best.domain
        org.updated_at = utcnow()
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            skipped_taken += 1
            continue
        entry["applied"] = True
        applied += 1

    logger.info(
        "domain_matches_completed",
        extra={
            "dry_run": dry_run,
            "organizations": len(organizations),
            "found": len(found),
            "applied": applied,
            "low_confidence": len(low_confidence),
        },
    )
    return {
        "dry_run": dry_run,
        "organizations_scanned": len(organizations),
        "found": found,
        "low_confidence": low_confidence,
        "not_found": not_found,
        "applied": applied,
        "skipped_domain_taken": skipped_taken,
    }
