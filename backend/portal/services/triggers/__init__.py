"""
Notification triggers: typed conditions, eligibility evaluators and the runner
that gates and dispatches per eligible user.
"""
from portal.services.triggers.conditions import TriggerCondition, parse_condition
from portal.services.triggers.evaluators import EVALUATORS, find_eligible_users
from portal.services.triggers.runner import RunSummary, TriggerRunner

__all__ = [
    "EVALUATORS",
    "RunSummary",
    "TriggerCondition",
    "TriggerRunner",
    "find_eligible_users",
    "parse_condition",
]
