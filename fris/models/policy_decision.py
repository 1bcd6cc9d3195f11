from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Enum, Float, Integer, JSON, String, Text

from .base import Base

DECISION_ACTIONS = ("HOLD", "STOP", "ALLOW", "ESCALATE", "NOTIFY")


def _default_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PolicyDecision(Base):
    __tablename__ = "policy_decisions"

    id = Column(Integer, primary_key=True)
    declaration_id = Column(String(50), nullable=False, index=True)
    action = Column(Enum(*DECISION_ACTIONS, name="decision_action", create_constraint=False), nullable=False)
    reason = Column(Text, nullable=True)
    policy_version = Column(String(50), nullable=False)
    ttl_minutes = Column(Integer, nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)
    rule_ids = Column(JSON, nullable=True)
    idempotency_key = Column(String(255), unique=True, nullable=True)
    workflow_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=_default_now, nullable=False)
