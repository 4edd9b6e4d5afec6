"""Prediction context, oracle client and forecast engine."""

from .context import ForecastContextBuilder
from .engine import PredictionEngine
from .oracle import OpenAIChatOracle, PredictionOracle

__all__ = ["ForecastContextBuilder", "PredictionEngine", "OpenAIChatOracle", "PredictionOracle"]
