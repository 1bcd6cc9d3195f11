ACTION_TYPES = ("HOLD", "STOP")
PRIORITY_LEVELS = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
STATUS_VALUES = ("PENDING", "ACTIVE", "EXPIRED", "RELEASED", "ESCALATED")
TERMINAL_STATUSES = ("EXPIRED", "RELEASED")
WORKFLOW_ACTION_TYPES = ("CREATE", "ESCALATE", "REVIEW", "RELEASE", "EXPIRE", "OVERRIDE")
REVIEW_OUTCOMES = ("APPROVED", "REJECTED", "NEEDS_MORE_INFO")

DEFAULT_PRIORITY = "MEDIUM"
DEFAULT_SLA_MINUTES = 480
SYSTEM_ACTOR = "system"
