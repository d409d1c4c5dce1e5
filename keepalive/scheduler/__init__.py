"""Scheduling core: rule evaluation, execution, recording and the tick loop."""

from keepalive.scheduler.engine import SchedulerEngine
from keepalive.scheduler.executor import TaskExecutor
from keepalive.scheduler.loop import SchedulerLoop, TickSummary
from keepalive.scheduler.recorder import ExecutionRecorder
from keepalive.scheduler.rules import (
    CronRule,
    IntervalRule,
    RuleCheck,
    RuleError,
    evaluate,
    is_due,
    next_occurrence,
    parse_rule,
)

__all__ = [
    "CronRule",
    "ExecutionRecorder",
    "IntervalRule",
    "RuleCheck",
    "RuleError",
    "SchedulerEngine",
    "SchedulerLoop",
    "TaskExecutor",
    "TickSummary",
    "evaluate",
    "is_due",
    "next_occurrence",
    "parse_rule",
]
