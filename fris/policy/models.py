import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


OPERATORS = ("equals", "greater_than", "less_than", "contains", "in", "not_in")
ACTION_TYPES = ("HOLD", "STOP", "ALLOW", "ESCALATE", "NOTIFY")


class PolicyPackError(ValueError):
    """Raised when a policy pack document cannot be loaded."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value) -> datetime:
    if value is None:
        return _utcnow()
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise PolicyPackError(f"Invalid timestamp: {value}") from exc


def _ts(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


@dataclass
class PolicyCondition:
    field: str
    operator: str
    value: Any
    weight: Optional[float] = None

    @property
    def effective_weight(self) -> float:
        # an unset or zero weight counts as one
        return float(self.weight) if self.weight else 1.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyCondition":
        operator = data.get("operator")
        if operator not in OPERATORS:
            raise PolicyPackError(f"Unknown condition operator: {operator}")
        if not data.get("field"):
            raise PolicyPackError("Condition field is required")
        weight = data.get("weight")
        if weight is not None:
            try:
                weight = float(weight)
            except (TypeError, ValueError) as exc:
                raise PolicyPackError(f"Condition weight must be numeric: {weight}") from exc
        return cls(field=data["field"], operator=operator, value=data.get("value"), weight=weight)

    def to_dict(self) -> Dict[str, Any]:
        out = {"field": self.field, "operator": self.operator, "value": self.value}
        if self.weight is not None:
            out["weight"] = self.weight
        return out


@dataclass
class PolicyAction:
    type: str
    parameters: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyAction":
        action_type = data.get("type")
        if action_type not in ACTION_TYPES:
            raise PolicyPackError(f"Unknown action type: {action_type}")
        return cls(type=action_type, parameters=dict(data.get("parameters") or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "parameters": dict(self.parameters)}


@dataclass
class PolicyRule:
    id: str
    name: str
    description: str
    enabled: bool
    priority: int
    conditions: List[PolicyCondition]
    actions: List[PolicyAction]
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyRule":
        if not data.get("id"):
            raise PolicyPackError("Rule id is required")
        conditions = data.get("conditions") or []
        actions = data.get("actions") or []
        if not isinstance(conditions, list) or not isinstance(actions, list):
            raise PolicyPackError(f"Rule {data['id']}: conditions and actions must be lists")
        try:
            priority = int(data.get("priority", 0))
        except (TypeError, ValueError) as exc:
            raise PolicyPackError(f"Rule {data['id']}: priority must be an integer") from exc
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            description=data.get("description") or "",
            enabled=bool(data.get("enabled", True)),
            priority=priority,
            conditions=[PolicyCondition.from_dict(c) for c in conditions],
            actions=[PolicyAction.from_dict(a) for a in actions],
            metadata=data.get("metadata"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "priority": self.priority,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
        }
        if self.metadata is not None:
            out["metadata"] = self.metadata
        return out


@dataclass
class GlobalSettings:
    default_hold_ttl: int = 720
    default_stop_ttl: int = 1440
    max_risk_score: float = 1.0
    enable_ml_scoring: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GlobalSettings":
        data = data or {}
        defaults = cls()
        return cls(
            default_hold_ttl=int(data.get("defaultHoldTtl", defaults.default_hold_ttl)),
            default_stop_ttl=int(data.get("defaultStopTtl", defaults.default_stop_ttl)),
            max_risk_score=float(data.get("maxRiskScore", defaults.max_risk_score)),
            enable_ml_scoring=bool(data.get("enableMLScoring", defaults.enable_ml_scoring)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "defaultHoldTtl": self.default_hold_ttl,
            "defaultStopTtl": self.default_stop_ttl,
            "maxRiskScore": self.max_risk_score,
            "enableMLScoring": self.enable_ml_scoring,
        }


@dataclass
class PolicyPack:
    version: str
    name: str
    description: str
    rules: List[PolicyRule]
    global_settings: GlobalSettings = dataclasses.field(default_factory=GlobalSettings)
    created_at: datetime = dataclasses.field(default_factory=_utcnow)
    updated_at: datetime = dataclasses.field(default_factory=_utcnow)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyPack":
        """
        Load a pack from its versioned document form (camelCase keys).

        Raises PolicyPackError when the version is missing or the rule list is
        malformed; the caller keeps its current pack in that case.
        """
        if not isinstance(data, dict):
            raise PolicyPackError("Policy pack must be an object")
        if not data.get("version"):
            raise PolicyPackError("Policy pack version is required")
        rules = data.get("rules")
        if not isinstance(rules, list):
            raise PolicyPackError("Policy pack rules must be a list")
        return cls(
            version=str(data["version"]),
            name=data.get("name") or "",
            description=data.get("description") or "",
            rules=[PolicyRule.from_dict(r) for r in rules],
            global_settings=GlobalSettings.from_dict(data.get("globalSettings")),
            created_at=_parse_ts(data.get("createdAt")),
            updated_at=_parse_ts(data.get("updatedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "name": self.name,
            "description": self.description,
            "rules": [r.to_dict() for r in self.rules],
            "globalSettings": self.global_settings.to_dict(),
            "createdAt": _ts(self.created_at),
            "updatedAt": _ts(self.updated_at),
        }

    def find_rule(self, rule_id: str) -> Optional[PolicyRule]:
        return next((r for r in self.rules if r.id == rule_id), None)


@dataclass
class PolicyContext:
    declaration: Dict[str, Any]
    risk_scores: Dict[str, Any]
    items: List[Dict[str, Any]]
    user: Optional[Dict[str, Any]] = None
    timestamp: str = dataclasses.field(default_factory=lambda: _ts(_utcnow()))

    def as_document(self) -> Dict[str, Any]:
        # Condition field paths address the context by these keys.
        return {
            "declaration": self.declaration,
            "riskScores": self.risk_scores,
            "items": self.items,
            "user": self.user,
            "timestamp": self.timestamp,
        }


@dataclass
class PolicyResult:
    triggered: bool
    rules: List[PolicyRule]
    actions: List[PolicyAction]
    confidence: float
    reason: str

    @property
    def rule_ids(self) -> List[str]:
        return [r.id for r in self.rules]

    def primary_action(self) -> PolicyAction:
        """The most severe action in the result: STOP, then HOLD, then the first action."""
        for action_type in ("STOP", "HOLD"):
            for action in self.actions:
                if action.type == action_type:
                    return action
        return self.actions[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggered": self.triggered,
            "rules": [r.to_dict() for r in self.rules],
            "actions": [a.to_dict() for a in self.actions],
            "confidence": self.confidence,
            "reason": self.reason,
        }
