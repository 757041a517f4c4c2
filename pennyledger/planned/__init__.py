"""Planned-operation templates and their monthly execution."""

from pennyledger.planned.engine import PlannedOperationEngine

__all__ = ["PlannedOperationEngine"]
