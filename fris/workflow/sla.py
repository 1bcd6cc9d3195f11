from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from fris.workflow.constants import DEFAULT_SLA_MINUTES


@dataclass(frozen=True)
class SLAConfig:
    action_type: str
    priority: str
    default_sla_minutes: int
    escalation_path: Tuple[str, ...]
    escalation_thresholds: Tuple[int, ...]
    notification_channels: Tuple[str, ...]


DEFAULT_SLA_CONFIGS: Tuple[SLAConfig, ...] = (
    SLAConfig(
        action_type="HOLD",
        priority="LOW",
        default_sla_minutes=240,
        escalation_path=("VALUATION", "SUPERVISOR"),
        escalation_thresholds=(50, 75, 90),
        notification_channels=("email", "sms", "system"),
    ),
    SLAConfig(
        action_type="HOLD",
        priority="MEDIUM",
        default_sla_minutes=480,
        escalation_path=("VALUATION", "SUPERVISOR", "MANAGER"),
        escalation_thresholds=(50, 75, 90),
        notification_channels=("email", "sms", "system"),
    ),
    SLAConfig(
        action_type="HOLD",
        priority="HIGH",
        default_sla_minutes=720,
        escalation_path=("VALUATION", "SUPERVISOR", "MANAGER", "DIRECTOR"),
        escalation_thresholds=(25, 50, 75, 90),
        notification_channels=("email", "sms", "system", "phone"),
    ),
    SLAConfig(
        action_type="STOP",
        priority="CRITICAL",
        default_sla_minutes=1440,
        escalation_path=("ENFORCEMENT", "SUPERVISOR", "MANAGER", "DIRECTOR", "COMMISSIONER"),
        escalation_thresholds=(25, 50, 75, 90),
        notification_channels=("email", "sms", "system", "phone", "alert"),
    ),
)


class SLATable:
    """Read-only (action_type, priority) -> SLAConfig lookup."""

    def __init__(self, configs: Iterable[SLAConfig] = DEFAULT_SLA_CONFIGS):
        self._configs: Dict[Tuple[str, str], SLAConfig] = {}
        for config in configs:
            self._configs.setdefault((config.action_type, config.priority), config)

    def lookup(self, action_type: str, priority: str) -> Optional[SLAConfig]:
        return self._configs.get((action_type, priority))

    def resolve_minutes(self, action_type: str, priority: str, override: Optional[int] = None) -> int:
        if override is not None:
            return int(override)
        config = self.lookup(action_type, priority)
        if config:
            return config.default_sla_minutes
        return DEFAULT_SLA_MINUTES

    def escalation_role(self, action_type: str, priority: str, level: int) -> Optional[str]:
        """Role on the escalation path for a 1-based escalation level, capped at the last role."""
        config = self.lookup(action_type, priority)
        if not config or not config.escalation_path or level < 1:
            return None
        return config.escalation_path[min(level, len(config.escalation_path)) - 1]
