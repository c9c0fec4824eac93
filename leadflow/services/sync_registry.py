"""In-flight tenant registry shared by the scheduler and the sync endpoints.

Process-local. Multiple API/worker instances do not see each other's marks.
"""

from __future__ import annotations

import threading
from uuid import UUID

from leadflow.core.config import settings

SKIP_CONCURRENT = "concurrent"
SKIP_MAX_CONCURRENT = "max_concurrent"


class TenantBusyError(Exception):
    """The tenant could not be marked in flight."""

    def __init__(self, org_id: UUID, reason: str):
        super().__init__(f"Tenant {org_id} busy: {reason}")
        self.org_id = org_id
        self.reason = reason


class TenantLease:
    """
    One acquired in-flight mark.

    The thread doing the work calls ``claim()`` before starting and
    ``release()`` when done. A caller that stops waiting uses
    ``release_if_unclaimed()`` so a job that never started cannot leak the mark.
    """

    def __init__(self, registry: "InFlightRegistry", org_id: UUID):
        self._registry = registry
        self.org_id = org_id
        self._lock = threading.Lock()
        self._claimed = False
        self._released = False

    def claim(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._claimed = True
            return True

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._registry.release(self.org_id)

    def release_if_unclaimed(self) -> None:
        with self._lock:
            if self._claimed or self._released:
                return
            self._released = True
        self._registry.release(self.org_id)

    @property
    def released(self) -> bool:
        return self._released


class InFlightRegistry:
    """Mutex-guarded set of tenants currently syncing."""

    def __init__(self, max_concurrent: int):
        self.max_concurrent = max_concurrent
        self._lock = threading.Lock()
        self._active: set[UUID] = set()

    def acquire(self, org_id: UUID, *, enforce_cap: bool = True) -> TenantLease:
        """
        Mark ``org_id`` in flight.

        Raises:
            TenantBusyError: already in flight, or the global cap is reached
                (cap only checked when ``enforce_cap``).
        """
        with self._lock:
            if org_id in self._active:
                raise TenantBusyError(org_id, SKIP_CONCURRENT)
            if enforce_cap and len(self._active) >= self.max_concurrent:
                raise TenantBusyError(org_id, SKIP_MAX_CONCURRENT)
            self._active.add(org_id)
        return TenantLease(self, org_id)

    def release(self, org_id: UUID) -> None:
        with self._lock:
            self._active.discard(org_id)

    def is_active(self, org_id: UUID) -> bool:
        with self._lock:
            return org_id in self._active

    def active_tenants(self) -> list[UUID]:
        with self._lock:
            return sorted(self._active, key=str)

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def clear(self) -> None:
        with self._lock:
            self._active.clear()


in_flight = InFlightRegistry(settings.SYNC_MAX_CONCURRENT_TENANTS)
