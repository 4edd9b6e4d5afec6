"""
SQLAlchemy-backed snapshot store.

Same contract as InMemorySnapshotStore, persisted to any SQLAlchemy URL
(PostgreSQL in deployment, SQLite in tests). The autoincrement primary key
doubles as the insertion sequence used to break timestamp ties.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from stormwatch.data.store import SnapshotStore
from stormwatch.models import (
    EnvironmentalSnapshot,
    FeedFamily,
    ForecastRecord,
    GeometryPayload,
    IntensityForecast,
    LandfallAssessment,
    PathPrediction,
    RasterPayload,
    TrackedEntity,
    validate_feed,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class SnapshotRow(Base):
    """Immutable environmental snapshot."""

    __tablename__ = "environmental_snapshots"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, index=True)
    family = Column(String(32), nullable=False)
    kind = Column(String(32), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    bounds = Column(JSON, nullable=False)
    payload = Column(JSON, nullable=False)
    extra_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<SnapshotRow({self.family}/{self.kind} @ {self.timestamp})>"


class EntityRow(Base):
    """Tracked storm, replaced whole on every refresh."""

    __tablename__ = "tracked_entities"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    category = Column(String(64), nullable=False)
    wind_speed = Column(Float, nullable=False)
    pressure = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    movement = Column(String(255), nullable=False)
    last_observed_at = Column(DateTime(timezone=True), nullable=False)
    next_expected_at = Column(DateTime(timezone=True), nullable=True)
    forecast_track = Column(JSON, nullable=True)
    active = Column(Boolean, default=True, nullable=False, index=True)
    provenance = Column(String(64), nullable=False, default="unknown")


class ForecastRow(Base):
    """Stored oracle forecast."""

    __tablename__ = "forecast_records"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, index=True)
    entity_id = Column(String(255), nullable=False, index=True)
    path_prediction = Column(JSON, nullable=False)
    intensity_forecast = Column(JSON, nullable=False)
    landfall = Column(JSON, nullable=False)
    analysis = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    model = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    valid_until = Column(DateTime(timezone=True), nullable=False)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything in the store is UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to UTC before writing so naive round-trips stay correct."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


# =============================================================================
# Row <-> domain conversion
# =============================================================================

def _payload_to_json(payload) -> dict:
    if isinstance(payload, GeometryPayload):
        return {"tag": "geometry", "features": list(payload.features)}
    return {
        "tag": "raster",
        "source_url": payload.source_url,
        "cog_url": payload.cog_url,
        "tile_url": payload.tile_url,
    }


def _payload_from_json(data: dict):
    if data.get("tag") == "geometry":
        return GeometryPayload(features=tuple(data.get("features") or ()))
    return RasterPayload(
        source_url=data["source_url"],
        cog_url=data.get("cog_url"),
        tile_url=data.get("tile_url"),
    )


def _snapshot_from_row(row: SnapshotRow) -> EnvironmentalSnapshot:
    return EnvironmentalSnapshot(
        family=FeedFamily(row.family),
        kind=row.kind,
        timestamp=_aware(row.timestamp),
        payload=_payload_from_json(row.payload),
        bounds=tuple(row.bounds),
        metadata=dict(row.extra_metadata or {}),
        created_at=_aware(row.created_at),
        id=row.id,
        sequence=row.sequence,
    )


def _entity_from_row(row: EntityRow) -> TrackedEntity:
    return TrackedEntity(
        id=row.id,
        name=row.name,
        category=row.category,
        wind_speed=row.wind_speed,
        pressure=row.pressure,
        latitude=row.latitude,
        longitude=row.longitude,
        movement=row.movement,
        last_observed_at=_aware(row.last_observed_at),
        next_expected_at=_aware(row.next_expected_at),
        forecast_track=row.forecast_track,
        active=row.active,
        provenance=row.provenance,
    )


def _forecast_from_row(row: ForecastRow) -> ForecastRecord:
    path = row.path_prediction or {}
    intensity = row.intensity_forecast or {}
    landfall = row.landfall or {}
    return ForecastRecord(
        id=row.id,
        sequence=row.sequence,
        entity_id=row.entity_id,
        path_prediction=PathPrediction(
            coordinates=tuple(tuple(c) for c in path.get("coordinates", ())),
            time_points=tuple(path.get("time_points", ())),
            confidence_level=path.get("confidence_level", 0.0),
        ),
        intensity_forecast=IntensityForecast(
            wind_speeds=tuple(intensity.get("wind_speeds", ())),
            pressures=tuple(intensity.get("pressures", ())),
            categories=tuple(intensity.get("categories", ())),
            time_points=tuple(intensity.get("time_points", ())),
        ),
        landfall=LandfallAssessment(
            probability=landfall.get("probability", 0.0),
            location=landfall.get("location"),
            time=landfall.get("time"),
        ),
        analysis=row.analysis,
        confidence=row.confidence,
        model=row.model or "",
        created_at=_aware(row.created_at),
        valid_until=_aware(row.valid_until),
    )


# =============================================================================
# Store
# =============================================================================

class SqlSnapshotStore(SnapshotStore):
    """SnapshotStore persisted through SQLAlchemy."""

    def __init__(self, database_url: str, echo: bool = False):
        kwargs = {"echo": echo}
        if database_url.startswith("sqlite"):
            # One shared connection so in-memory databases survive across sessions
            kwargs["connect_args"] = {"check_same_thread": False}
            kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True  # Verify connections before using
        self.engine = create_engine(database_url, **kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._write_lock = threading.Lock()
        self.init_db()

    def init_db(self):
        """Create tables if they do not exist."""
        logger.info("Initializing snapshot store tables...")
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Session scope: commit on success, roll back and re-raise on error.

        Usage:
            with store.session() as db:
                db.query(SnapshotRow).all()
        """
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception as e:
            logger.error(f"Snapshot store session error: {e}")
            db.rollback()
            raise
        finally:
            db.close()

    # -- snapshots ---------------------------------------------------------

    def append(self, snapshot: EnvironmentalSnapshot) -> EnvironmentalSnapshot:
        row = SnapshotRow(
            id=str(uuid.uuid4()),
            family=snapshot.family.value,
            kind=snapshot.kind,
            timestamp=_utc(snapshot.timestamp),
            bounds=list(snapshot.bounds),
            payload=_payload_to_json(snapshot.payload),
            extra_metadata=dict(snapshot.metadata),
            created_at=_utc(snapshot.created_at),
        )
        with self._write_lock, self.session() as db:
            db.add(row)
            db.flush()
            return _snapshot_from_row(row)

    def latest(self, family: FeedFamily, kind: str) -> Optional[EnvironmentalSnapshot]:
        family = validate_feed(family, kind)
        with self.session() as db:
            row = (
                db.query(SnapshotRow)
                .filter(SnapshotRow.family == family.value, SnapshotRow.kind == kind)
                .order_by(SnapshotRow.timestamp.desc(), SnapshotRow.sequence.desc())
                .first()
            )
            return _snapshot_from_row(row) if row is not None else None

    def list_snapshots(self, family: FeedFamily, kind: str) -> List[EnvironmentalSnapshot]:
        family = validate_feed(family, kind)
        with self.session() as db:
            rows = (
                db.query(SnapshotRow)
                .filter(SnapshotRow.family == family.value, SnapshotRow.kind == kind)
                .order_by(SnapshotRow.timestamp.desc(), SnapshotRow.sequence.desc())
                .all()
            )
            return [_snapshot_from_row(r) for r in rows]

    # -- entities ----------------------------------------------------------

    def upsert_entity(self, entity: TrackedEntity) -> TrackedEntity:
        row = EntityRow(
            id=entity.id,
            name=entity.name,
            category=entity.category,
            wind_speed=entity.wind_speed,
            pressure=entity.pressure,
            latitude=entity.latitude,
            longitude=entity.longitude,
            movement=entity.movement,
            last_observed_at=_utc(entity.last_observed_at),
            next_expected_at=_utc(entity.next_expected_at),
            forecast_track=entity.forecast_track,
            active=entity.active,
            provenance=entity.provenance,
        )
        with self._write_lock, self.session() as db:
            merged = db.merge(row)
            db.flush()
            return _entity_from_row(merged)

    def get_entity(self, entity_id: str) -> Optional[TrackedEntity]:
        with self.session() as db:
            row = db.get(EntityRow, entity_id)
            return _entity_from_row(row) if row is not None else None

    def list_entities(self, active_only: bool = True) -> List[TrackedEntity]:
        with self.session() as db:
            query = db.query(EntityRow)
            if active_only:
                query = query.filter(EntityRow.active.is_(True))
            return [_entity_from_row(r) for r in query.order_by(EntityRow.id).all()]

    # -- forecasts ---------------------------------------------------------

    def append_forecast(self, record: ForecastRecord) -> ForecastRecord:
        path = record.path_prediction
        intensity = record.intensity_forecast
        row = ForecastRow(
            id=str(uuid.uuid4()),
            entity_id=record.entity_id,
            path_prediction={
                "coordinates": [list(c) for c in path.coordinates],
                "time_points": list(path.time_points),
                "confidence_level": path.confidence_level,
            },
            intensity_forecast={
                "wind_speeds": list(intensity.wind_speeds),
                "pressures": list(intensity.pressures),
                "categories": list(intensity.categories),
                "time_points": list(intensity.time_points),
            },
            landfall={
                "probability": record.landfall.probability,
                "location": record.landfall.location,
                "time": record.landfall.time,
            },
            analysis=record.analysis,
            confidence=record.confidence,
            model=record.model,
            created_at=_utc(record.created_at),
            valid_until=_utc(record.valid_until),
        )
        with self._write_lock, self.session() as db:
            db.add(row)
            db.flush()
            return _forecast_from_row(row)

    def latest_forecast(self, entity_id: str) -> Optional[ForecastRecord]:
        with self.session() as db:
            row = (
                db.query(ForecastRow)
                .filter(ForecastRow.entity_id == entity_id)
                .order_by(ForecastRow.created_at.desc(), ForecastRow.sequence.desc())
                .first()
            )
            return _forecast_from_row(row) if row is not None else None

    def list_forecasts(self, entity_id: Optional[str] = None) -> List[ForecastRecord]:
        with self.session() as db:
            query = db.query(ForecastRow)
            if entity_id is not None:
                query = query.filter(ForecastRow.entity_id == entity_id)
            rows = query.order_by(
                ForecastRow.created_at.desc(), ForecastRow.sequence.desc()
            ).all()
            return [_forecast_from_row(r) for r in rows]
