"""STORMWATCH: tropical cyclone feed ingestion and forecasting."""

__version__ = "1.0.0"
