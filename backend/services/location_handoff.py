"""
Explicit hand-off between the report form and the location-edit screen.

The report flow creates a LocationHandoff, passes it to the edit session at
navigation time, and reads the outcome back when the session ends. Exactly
one of confirmed / cancelled is recorded per visit.
"""
from __future__ import annotations

import logging
import threading
from typing import Generic, Optional, TypeVar

from domain.models import ConfirmedLocation, HandoffOutcome, HandoffStatus

T = TypeVar("T")

logger = logging.getLogger(__name__)


class HandoffSlot(Generic[T]):
    """Single-slot channel with explicit set / consume / clear."""

    def __init__(self) -> None:
        self._value: Optional[T] = None
        self._lock = threading.Lock()

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value

    def peek(self) -> Optional[T]:
        with self._lock:
            return self._value

    def consume(self) -> Optional[T]:
        """Return the stored value and empty the slot."""
        with self._lock:
            value, self._value = self._value, None
            return value

    def clear(self) -> None:
        with self._lock:
            self._value = None

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._value is not None


class LocationHandoff:
    """
    One visit's result channel. The first confirm() or cancel() wins; any
    later call is ignored and returns False.
    """

    def __init__(self, form_snapshot: Optional[dict] = None):
        self._outcome: HandoffSlot[HandoffOutcome] = HandoffSlot()
        # report-form fields parked while the user edits the location
        self.form_snapshot: HandoffSlot[dict] = HandoffSlot()
        if form_snapshot is not None:
            self.form_snapshot.set(dict(form_snapshot))
        self._resolved = False
        self._lock = threading.Lock()

    @property
    def resolved(self) -> bool:
        return self._resolved

    def _resolve(self, outcome: HandoffOutcome) -> bool:
        with self._lock:
            if self._resolved:
                logger.warning("location hand-off already resolved; ignoring %s", outcome.status.value)
                return False
            self._resolved = True
            self._outcome.set(outcome)
        return True

    def confirm(self, location: ConfirmedLocation) -> bool:
        return self._resolve(HandoffOutcome(status=HandoffStatus.CONFIRMED, location=location))

    def cancel(self) -> bool:
        return self._resolve(HandoffOutcome(status=HandoffStatus.CANCELLED))

    def consume(self) -> Optional[HandoffOutcome]:
        """Read the outcome once; the report form calls this when it regains focus."""
        return self._outcome.consume()

    def clear(self) -> None:
        self._outcome.clear()
        self.form_snapshot.clear()
