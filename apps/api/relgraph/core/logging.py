from __future__ import annotations

import logging

from relgraph.core.config import get_settings

# Attributes present on every LogRecord; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys() | {"message", "asctime"}
)


class ExtraFieldsFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}
        if not extras:
            return base
        rendered = " ".join(f"{key}={value!r}" for key, value in sorted(extras.items()))
        return f"{base} | {rendered}"


def configure_logging(level: str | None = None) -> None:
    settings = get_settings()
    root = logging.getLogger()
    resolved = (level or settings.log_level or "INFO").upper()
    root.setLevel(resolved)

    if any(getattr(handler, "_relgraph_handler", False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFieldsFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    handler._relgraph_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
