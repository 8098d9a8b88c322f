from __future__ import annotations

import os

os.environ.setdefault("DATABASE_DSN", "sqlite:///./relgraph_test.db")
os.environ["QUEUE_MODE"] = "inline"
os.environ.setdefault("WEBHOOK_ALLOW_BROADCAST", "false")
os.environ.setdefault("INTERNAL_EMAIL_DOMAINS", "")
os.environ.setdefault("INTERNAL_USER_EMAILS", "")
os.environ.pop("OPENAI_API_KEY", None)
