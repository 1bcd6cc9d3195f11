from datetime import datetime, timedelta, timezone
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from fris.models.base import Base
from fris.workflow.constants import (
    ACTION_TYPES,
    PRIORITY_LEVELS,
    STATUS_VALUES,
    TERMINAL_STATUSES,
    WORKFLOW_ACTION_TYPES,
)


def _default_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class HoldStopWorkflow(Base):
    __tablename__ = "hold_stop_workflows"

    id = Column(String(64), primary_key=True)
    declaration_id = Column(String(50), nullable=False, index=True)
    action_type = Column(Enum(*ACTION_TYPES, name="workflow_action_type", create_constraint=False), nullable=False)
    status = Column(Enum(*STATUS_VALUES, name="workflow_status", create_constraint=False), nullable=False, default="ACTIVE", index=True)
    created_at = Column(DateTime, default=_default_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_by = Column(String(255), nullable=False)
    assigned_to = Column(String(255), nullable=True)
    priority = Column(Enum(*PRIORITY_LEVELS, name="workflow_priority", create_constraint=False), nullable=False, default="MEDIUM")
    reason = Column(Text, nullable=False)
    policy_version = Column(String(50), nullable=False)
    rule_ids = Column(JSON, nullable=False, default=list)
    sla_minutes = Column(Integer, nullable=False)
    escalation_level = Column(Integer, nullable=True)
    review_required = Column(Boolean, nullable=False, default=False)
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    release_authorized_by = Column(String(255), nullable=True)
    release_authorized_at = Column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes
    workflow_metadata = Column("metadata", JSON, nullable=True)
    updated_at = Column(DateTime, default=_default_now, onupdate=_default_now, nullable=False)
    version = Column(Integer, nullable=False)

    actions = relationship(
        "WorkflowAction",
        back_populates="workflow",
        order_by="WorkflowAction.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def sla_percent(self, now: datetime) -> float:
        """Share of the SLA window already elapsed at `now`, in percent."""
        window = timedelta(minutes=self.sla_minutes).total_seconds()
        if window <= 0:
            return 100.0
        remaining = (self.expires_at - now).total_seconds()
        return (window - remaining) / window * 100


class WorkflowAction(Base):
    """Append-only audit trail entry for a workflow transition."""

    __tablename__ = "workflow_actions"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(128), unique=True, nullable=False)
    workflow_id = Column(String(64), ForeignKey("hold_stop_workflows.id"), nullable=False, index=True)
    declaration_id = Column(String(50), nullable=False)
    action_type = Column(Enum(*WORKFLOW_ACTION_TYPES, name="workflow_action", create_constraint=False), nullable=False)
    performed_by = Column(String(255), nullable=False)
    performed_at = Column(DateTime, default=_default_now, nullable=False)
    notes = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    workflow = relationship("HoldStopWorkflow", back_populates="actions")


@event.listens_for(WorkflowAction, "before_update")
def _reject_action_update(mapper, connection, target):
    raise ValueError(f"Workflow action {target.event_id} is immutable")


@event.listens_for(WorkflowAction, "before_delete")
def _reject_action_delete(mapper, connection, target):
    raise ValueError(f"Workflow action {target.event_id} is immutable")
