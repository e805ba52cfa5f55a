"""Backend package for the PlanPal realtime chat and presence service."""

from .config import BackendSettings, load_settings
from .engine import FanoutEngine
from .errors import ForbiddenError, InvalidPayloadError, NotFoundError, PlannerError
from .hub import RealtimeHub
from .presence import PresenceRegistry
from .rooms import RoomRouter
from .security import generate_token, hash_token, verify_token
from .store import InMemoryPlannerStore, PlannerStore, PostgresPlannerStore, create_store

__all__ = [
    "BackendSettings",
    "create_store",
    "FanoutEngine",
    "ForbiddenError",
    "generate_token",
    "hash_token",
    "InMemoryPlannerStore",
    "InvalidPayloadError",
    "load_settings",
    "NotFoundError",
    "PlannerError",
    "PlannerStore",
    "PostgresPlannerStore",
    "PresenceRegistry",
    "RealtimeHub",
    "RoomRouter",
    "verify_token",
]
