"""Feed snapshot schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from stormwatch.models import EnvironmentalSnapshot, GeometryPayload


class SnapshotResponse(BaseModel):
    """
    One stored snapshot.

    Track-geometry snapshots carry ``geojson``; raster families carry the
    source, COG and tile-template URLs instead.
    """
    id: str
    family: str
    kind: str
    timestamp: datetime
    bounds: List[float]
    metadata: Dict[str, Any]
    geojson: Optional[Dict[str, Any]] = None
    source_url: Optional[str] = None
    cog_url: Optional[str] = None
    tile_url: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: EnvironmentalSnapshot) -> "SnapshotResponse":
        payload = snapshot.payload
        fields: Dict[str, Any] = {}
        if isinstance(payload, GeometryPayload):
            fields["geojson"] = payload.to_geojson()
        else:
            fields.update(
                source_url=payload.source_url,
                cog_url=payload.cog_url,
                tile_url=payload.tile_url,
            )
        return cls(
            id=snapshot.id,
            family=snapshot.family.value,
            kind=snapshot.kind,
            timestamp=snapshot.timestamp,
            bounds=list(snapshot.bounds),
            metadata=dict(snapshot.metadata),
            **fields,
        )
