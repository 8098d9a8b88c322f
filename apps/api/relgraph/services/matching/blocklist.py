from __future__ import annotations

from functools import lru_cache

from relgraph.core.config import get_settings

GENERIC_PROVIDERS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "outlook.com",
        "hotmail.com",
        "live.com",
        "msn.com",
        "me.com",
        "icloud.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "hey.com",
        "fastmail.com",
        "zoho.com",
        "gmx.com",
    }
)

GROUPWARE_AND_SAAS = frozenset(
    {
        "google.com",
        "slack.com",
        "notion.so",
        "linkedin.com",
        "calendly.com",
        "zoom.us",
        "loom.com",
        "box.com",
        "docsend.com",
        "docusign.com",
        "docusign.net",
        "angellist.com",
        "gusto.com",
        "rippling.com",
        "justworks.com",
        "stripe.com",
        "brex.com",
        "mercury.com",
        "carta.com",
        "pulley.com",
        "clerky.com",
        "myfilingservices.com",
        "ct.com",
        "ctcorporation.com",
        "usesignblueinkhq.com",
        "read.ai",
        "fireflies.ai",
        "dust.tt",
        "dust.help",
        "nd.edu",
        "stanford.edu",
        "mit.edu",
        "harvard.edu",
    }
)

BUILTIN_BLOCKED_DOMAINS = GENERIC_PROVIDERS | GROUPWARE_AND_SAAS

# Bulk-mail hosts such as mail.vendor.com or e.vendor.com never identify the sender's company.
BULK_MAIL_LABELS = frozenset({"mail", "email", "e", "em", "mailer", "news", "newsletter", "bounce"})


@lru_cache(maxsize=1)
def blocked_domains() -> frozenset[str]:
    extra = {part.strip().lower() for part in get_settings().extra_blocked_domains.split(",") if part.strip()}
    return BUILTIN_BLOCKED_DOMAINS | frozenset(extra)


def is_blocked_domain(domain: str, blocked: frozenset[str] | None = None) -> bool:
    blocked = blocked_domains() if blocked is None else blocked
    normalized = domain.strip().lower()
    if normalized in blocked:
        return True
    if any(normalized.endswith(f".{entry}") for entry in blocked):
        return True
    labels = normalized.split(".")
    return len(labels) > 2 and labels[0] in BULK_MAIL_LABELS
