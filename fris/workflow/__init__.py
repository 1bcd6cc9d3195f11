"""
Hold/Stop workflow package: time-boxed enforcement workflows on customs
declarations, their SLA configuration, audit trail and expiration sweep.
"""

from .errors import IllegalTransitionError, WorkflowConflictError, WorkflowError, WorkflowNotFoundError
from .manager import HoldStopWorkflowManager, SweepResult
from .models import HoldStopWorkflow, WorkflowAction
from .notifier import LoggingNotifier, Notifier, TelegramNotifier, build_notifier
from .schemas import workflow_action_to_dict, workflow_to_dict
from .sla import DEFAULT_SLA_CONFIGS, SLAConfig, SLATable
from .sweeper import WorkflowSweeper

__all__ = [
    "IllegalTransitionError",
    "WorkflowConflictError",
    "WorkflowError",
    "WorkflowNotFoundError",
    "HoldStopWorkflowManager",
    "SweepResult",
    "HoldStopWorkflow",
    "WorkflowAction",
    "LoggingNotifier",
    "Notifier",
    "TelegramNotifier",
    "build_notifier",
    "workflow_action_to_dict",
    "workflow_to_dict",
    "DEFAULT_SLA_CONFIGS",
    "SLAConfig",
    "SLATable",
    "WorkflowSweeper",
]
