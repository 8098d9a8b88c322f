"""Error taxonomy shared by the resolution, graph and sync services.

Services raise these; the HTTP layer maps them to status codes through a single
exception handler registered in ``relgraph.main``. Item-level failures during a
sync run are caught by the coordinator and reported in the run result instead
of propagating.
"""

from __future__ import annotations

from typing import Any


class RelGraphError(Exception):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


class ValidationError(RelGraphError):
    status_code = 422
    error_code = "validation_error"


class NotFoundError(RelGraphError):
    status_code = 404
    error_code = "not_found"


class ConflictError(RelGraphError):
    status_code = 409
    error_code = "conflict"


class UpstreamProviderError(RelGraphError):
    status_code = 502
    error_code = "upstream_provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        kind: str = "network",
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.provider = provider
        self.kind = kind
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind in {"network", "rate_limit", "server"}

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update({"provider": self.provider, "kind": self.kind, "retryable": self.retryable})
        return payload


class SignatureError(RelGraphError):
    status_code = 401
    error_code = "signature_error"
