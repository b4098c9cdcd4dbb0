"""Live-synchronised order, tour and passenger data for the tour-booking dashboard."""
from .const import VERSION
from .grouping import GroupingProjector, ProjectionParams
from .models import ChangeEvent, Entity, EntityFilter
from .reconciler import ChangeReconciler
from .registry import SyncRegistry
from .retry import RetryingFetcher, RetryPolicy
from .settings import Settings, load_settings

__version__ = VERSION

__all__ = [
    "ChangeEvent",
    "ChangeReconciler",
    "Entity",
    "EntityFilter",
    "GroupingProjector",
    "ProjectionParams",
    "RetryPolicy",
    "RetryingFetcher",
    "Settings",
    "SyncRegistry",
    "load_settings",
]
