"""
System status aggregation.

A pure read over configuration, store recency and the last cycle report.
Computing status never fetches anything.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from stormwatch.config import Settings
from stormwatch.data.store import SnapshotStore
from stormwatch.models import (
    FEED_KINDS,
    CycleReport,
    FamilyStatus,
    FeedFamily,
    FeedHealth,
    SystemStatusView,
    utcnow,
)
from stormwatch.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

FAMILY_LABELS = {
    FeedFamily.TRACK_GEOMETRY: "NHC track geometry",
    FeedFamily.GRIDDED_WEATHER: "GFS gridded weather",
    FeedFamily.OCEAN_FIELD: "CMEMS ocean fields",
}


class StatusAggregator:
    """
    Derives SystemStatusView.

    Args:
        settings: Credential presence and staleness threshold
        store: Snapshot and entity store
        last_report: Returns the most recent CycleReport, if any
        oracle_configured: Whether forecasts can be generated
        breakers: Circuit breakers owned by this service, reported by name
        clock: Source of "now" (UTC)
    """

    def __init__(
        self,
        settings: Settings,
        store: SnapshotStore,
        last_report: Callable[[], Optional[CycleReport]] = lambda: None,
        oracle_configured: bool = False,
        breakers: Sequence[CircuitBreaker] = (),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.last_report = last_report
        self.oracle_configured = oracle_configured
        self.breakers = tuple(breakers)
        self.clock = clock

    def requires_credentials(self, family: FeedFamily) -> bool:
        return family == FeedFamily.OCEAN_FIELD

    def has_credentials(self, family: FeedFamily) -> bool:
        if family == FeedFamily.OCEAN_FIELD:
            return self.settings.has_cmems_credentials
        return False

    def is_configured(self, family: FeedFamily) -> bool:
        if family == FeedFamily.TRACK_GEOMETRY:
            return bool(self.settings.nhc_arcgis_url or self.settings.nhc_mirror_url)
        if family == FeedFamily.GRIDDED_WEATHER:
            return bool(self.settings.gfs_bucket_url)
        return self.settings.has_cmems_credentials

    def last_update(self, family: FeedFamily) -> Optional[datetime]:
        """Fetch time of the most recently stored snapshot of ``family``."""
        latest = [self.store.latest(family, kind) for kind in FEED_KINDS[family]]
        fetched = [s.created_at for s in latest if s is not None]
        return max(fetched) if fetched else None

    def family_status(self, family: FeedFamily, now: datetime) -> FamilyStatus:
        label = FAMILY_LABELS[family]
        configured = self.is_configured(family)
        last_update = self.last_update(family)

        if self.requires_credentials(family) and not self.has_credentials(family):
            return FamilyStatus(
                family, FeedHealth.MISSING_CREDENTIALS, last_update, configured,
                f"{label}: credentials not configured",
            )

        threshold = timedelta(hours=self.settings.staleness_hours)
        if last_update is not None and now - last_update <= threshold:
            return FamilyStatus(
                family, FeedHealth.OPERATIONAL, last_update, configured,
                f"{label}: live",
            )

        report = self.last_report()
        if report is not None and report.family_failed(family):
            reason = "last refresh failed"
        elif last_update is None:
            reason = "no data received yet"
        else:
            reason = f"no data in the last {self.settings.staleness_hours:g}h"

        if self.has_credentials(family):
            health = FeedHealth.CONFIGURED_BUT_UNREACHABLE
        else:
            health = FeedHealth.UNAVAILABLE
        return FamilyStatus(family, health, last_update, configured, f"{label}: {reason}")

    def compute_status(self) -> SystemStatusView:
        now = self.clock()
        active = len(self.store.list_entities(active_only=True))
        families = tuple(self.family_status(family, now) for family in FeedFamily)
        report = self.last_report()
        return SystemStatusView(
            active_entities=active,
            families=families,
            status="live" if active > 0 and self.oracle_configured else "limited",
            oracle_configured=self.oracle_configured,
            last_cycle=report.to_dict() if report is not None else None,
            circuit_breakers={b.name: b.get_status() for b in self.breakers},
        )
