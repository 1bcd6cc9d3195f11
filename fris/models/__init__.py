from .base import Base
from .declaration import Declaration, DECLARATION_STATUS, CHANNEL_VALUES
from .policy_decision import PolicyDecision, DECISION_ACTIONS
from .case import Case, CaseAction, CASE_TYPES, CASE_STATUS, CASE_OUTCOMES, CASE_ACTIONS
from .payment import Payment, PAYMENT_STATUS

__all__ = [
    "Base",
    "Declaration",
    "DECLARATION_STATUS",
    "CHANNEL_VALUES",
    "PolicyDecision",
    "DECISION_ACTIONS",
    "Case",
    "CaseAction",
    "CASE_TYPES",
    "CASE_STATUS",
    "CASE_OUTCOMES",
    "CASE_ACTIONS",
    "Payment",
    "PAYMENT_STATUS",
]
