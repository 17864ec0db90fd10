"""Utilities for surfacing actionable diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

# Codes the API layer translates into HTTP statuses; anything else is a 502.
_HTTP_STATUS_BY_CODE = {
    "InvalidMonitoringConfig": 422,
    "PublicationNotFound": 404,
    "ConnectionEndpointMissing": 409,
    "TopologyFileInvalid": 500,
}


@dataclass(slots=True)
class DiagnosticError(RuntimeError):
    """Error raised when we want to surface a friendly message to an operator."""

    code: str
    message: str
    detail: str | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}" if not self.detail else f"{self.code}: {self.message} ({self.detail})"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS_BY_CODE.get(self.code, 502)

    def to_extra(self) -> dict[str, Any]:
        """Return a dict suitable for log enrichment (``message`` is a reserved LogRecord attribute)."""

        data = {"code": self.code, "diagnostic": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data

    @classmethod
    def invalid_config(cls, exc: ValidationError) -> "DiagnosticError":
        """Summarize a pydantic validation failure as a configuration diagnostic."""

        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "config"
            problems.append(f"{location}: {error.get('msg')}")
        return cls(
            "InvalidMonitoringConfig",
            "Monitoring configuration rejected; the previous configuration remains active.",
            detail="; ".join(problems),
        )


__all__ = ["DiagnosticError"]
