"""In-memory, deduplicating store of active replication alerts."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from replication_monitor.services.models import Alert, AlertCandidate, AlertKey, utcnow

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


def _new_alert_id() -> str:
    return str(uuid.uuid4())


class AlertLedger:
    """Keyed store of active alerts.

    An alert is identified by its severity and source (publication, subscriber, subscriber db, agent). Re-detecting a
    condition that already has an alert is a no-op, so a condition that stays unhealthy for many cycles keeps exactly
    one alert with its original ``created_at``. Clearing an alert does not silence the check: if the condition is
    still present the next cycle reconciles a fresh alert with a new id.

    The ledger is only mutated from inside a health cycle (or a command serialized with cycles by the scheduler), so it
    carries no locking of its own.
    """

    def __init__(self, clock: Clock = utcnow, id_factory: IdFactory = _new_alert_id) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self._alerts: dict[AlertKey, Alert] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def __contains__(self, key: object) -> bool:
        return key in self._alerts

    def get(self, key: AlertKey) -> Alert | None:
        return self._alerts.get(key)

    def reconcile(self, candidate: AlertCandidate) -> Alert | None:
        """Insert ``candidate`` unless an alert with the same identity exists.

        Returns the newly created alert, or ``None`` when the candidate was discarded as a duplicate.
        """

        key = candidate.key
        if key in self._alerts:
            return None
        alert = Alert(
            id=self._id_factory(),
            severity=candidate.severity,
            message=candidate.message,
            created_at=self._clock(),
            source=candidate.source,
            category=candidate.category,
            recommended_action=candidate.recommended_action,
        )
        self._alerts[key] = alert
        return alert

    def expire(self, retention_hours: float) -> list[Alert]:
        """Drop alerts created before ``now - retention_hours`` and return them."""

        cutoff = self._clock() - timedelta(hours=retention_hours)
        expired = [alert for alert in self._alerts.values() if alert.created_at < cutoff]
        for alert in expired:
            del self._alerts[alert.key]
        return expired

    def clear(self, alert_id: str) -> bool:
        """Remove the alert with ``alert_id``; unknown ids are ignored."""

        for key, alert in self._alerts.items():
            if alert.id == alert_id:
                del self._alerts[key]
                return True
        return False

    def snapshot_all(self) -> tuple[Alert, ...]:
        return tuple(self._alerts.values())


__all__ = ["AlertLedger", "Clock", "IdFactory"]
