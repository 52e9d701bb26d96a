"""Churn model comparison workflow (data, recipe, torch models, metrics, plan)."""

from .config import ChurnConfig
from .plan import COMMANDS, build_churn_plan

__all__ = ["COMMANDS", "ChurnConfig", "build_churn_plan"]
