"""
ChurnPlan

Incremental build plans (targets, fingerprints, a staleness-aware scheduler)
and the churn-model comparison workflow built on top of them.
"""

# core first: the cache backends import core.errors.
from .core import (
    CommandRegistry,
    FunctionCommand,
    PlanConfig,
    RunRecord,
    Scheduler,
    TargetGraph,
)
from .cache import FingerprintStore

__version__ = "0.1.0"
__all__ = [
    'CommandRegistry', 'FingerprintStore', 'FunctionCommand', 'PlanConfig',
    'RunRecord', 'Scheduler', 'TargetGraph',
    '__version__'
]
