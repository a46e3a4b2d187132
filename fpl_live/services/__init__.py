"""Service layer for the live sync pipeline."""

from fpl_live.services.fpl_client import FplApiClient
from fpl_live.services.live_state import LiveStateDetector
from fpl_live.services.orchestrator import LiveSyncOrchestrator
from fpl_live.services.upsert import UpsertEngine

__all__ = ["FplApiClient", "LiveStateDetector", "LiveSyncOrchestrator", "UpsertEngine"]
