"""Status, refresh and health schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from stormwatch.models import CycleReport, SystemStatusView


class FamilyStatusModel(BaseModel):
    family: str
    health: str  # operational | configured-but-unreachable | missing-credentials | unavailable
    last_update: Optional[datetime] = None
    configured: bool
    message: str


class StatusResponse(BaseModel):
    """Derived system health."""
    status: str  # live | limited
    active_hurricanes: int
    ai_predictions: bool
    data_sources: List[FamilyStatusModel]
    last_cycle: Optional[Dict[str, Any]] = None
    circuit_breakers: Dict[str, Any] = {}

    @classmethod
    def from_view(cls, view: SystemStatusView) -> "StatusResponse":
        return cls(
            status=view.status,
            active_hurricanes=view.active_entities,
            ai_predictions=view.oracle_configured,
            data_sources=[
                FamilyStatusModel(
                    family=s.family.value,
                    health=s.health.value,
                    last_update=s.last_update,
                    configured=s.configured,
                    message=s.message,
                )
                for s in view.families
            ],
            last_cycle=view.last_cycle,
            circuit_breakers=view.circuit_breakers or {},
        )


class RefreshResponse(BaseModel):
    """Outcome of a manual refresh."""
    success: bool
    message: str
    succeeded: Dict[str, List[str]]
    failed: Dict[str, Dict[str, str]]
    hurricanes_updated: List[str]
    fallback_used: bool
    started_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_report(cls, report: CycleReport) -> "RefreshResponse":
        return cls(
            success=report.success_count > 0 or report.fallback_used,
            message=(
                f"{report.success_count} feed(s) refreshed, "
                f"{report.failure_count} failed"
            ),
            succeeded={f.value: list(k) for f, k in report.succeeded.items()},
            failed={f.value: dict(k) for f, k in report.failed.items()},
            hurricanes_updated=list(report.entities_upserted),
            fallback_used=report.fallback_used,
            started_at=report.started_at,
            finished_at=report.finished_at,
        )


class LivenessResponse(BaseModel):
    status: str
    timestamp: datetime
