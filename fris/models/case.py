from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from .base import Base

CASE_TYPES = ("PCA", "INVESTIGATION", "VALUATION_REVIEW")
CASE_STATUS = ("OPEN", "CLOSED")
CASE_OUTCOMES = ("ADVERSE", "CLEAN", "SETTLED", "APPEALED")
CASE_ACTIONS = ("CASE_OPENED", "CASE_AUTO_CREATED", "CASE_CLOSED")


def _default_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Case(Base):
    __tablename__ = "cases"

    id = Column(Integer, primary_key=True)
    case_id = Column(String(64), unique=True, nullable=False)
    declaration_id = Column(String(50), nullable=False, index=True)
    type = Column(Enum(*CASE_TYPES, name="case_type", create_constraint=False), nullable=False)
    status = Column(Enum(*CASE_STATUS, name="case_status", create_constraint=False), nullable=False, default="OPEN")
    outcome = Column(Enum(*CASE_OUTCOMES, name="case_outcome", create_constraint=False), nullable=True)
    expected_recovery = Column(Float, nullable=True)
    recovery_amount = Column(Float, nullable=True)
    assigned_to = Column(String(100), nullable=True)
    opened_at = Column(DateTime, default=_default_now, nullable=False)
    closed_at = Column(DateTime, nullable=True)

    actions = relationship("CaseAction", back_populates="case", cascade="all, delete-orphan")


class CaseAction(Base):
    __tablename__ = "case_actions"

    id = Column(Integer, primary_key=True)
    case_id = Column(Integer, ForeignKey("cases.id"), nullable=False)
    action = Column(Enum(*CASE_ACTIONS, name="case_action", create_constraint=False), nullable=False)
    performed_by = Column(String(255), default="system", nullable=False)
    notes = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_default_now, nullable=False)

    case = relationship("Case", back_populates="actions")
