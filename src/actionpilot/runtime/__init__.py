"""Runtime layer - plan execution and its helpers."""

from .follow_up import FollowUp, FollowUpBridge, fallback_summary
from .narrator import StepNarrator
from .placeholders import (
    PlaceholderExpression,
    PlaceholderResolver,
    Resolution,
    Resolved,
    Unresolved,
    parse_expression,
)
from .plan_executor import PlanExecutor
from .repair import ArgumentRepairCoordinator
from .run_manager import PlanGenerator, PlannedStep, create_run

__all__ = [
    "ArgumentRepairCoordinator",
    "FollowUp",
    "FollowUpBridge",
    "PlaceholderExpression",
    "PlaceholderResolver",
    "PlanExecutor",
    "PlanGenerator",
    "PlannedStep",
    "Resolution",
    "Resolved",
    "StepNarrator",
    "Unresolved",
    "create_run",
    "fallback_summary",
    "parse_expression",
]
