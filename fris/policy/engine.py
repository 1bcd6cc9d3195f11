import copy
import json
import logging
import math
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Union

from fris.policy.models import (
    PolicyAction,
    PolicyContext,
    PolicyPack,
    PolicyPackError,
    PolicyResult,
    PolicyRule,
    PolicyCondition,
)
from fris.policy.packs import default_policy_pack

logger = logging.getLogger(__name__)

TRIGGER_THRESHOLD = 0.5
NO_RISK_CONFIDENCE = 0.1

# Marker for a field path that does not resolve; distinct from an explicit null.
_MISSING = object()


def resolve_field(document: Any, path: str) -> Any:
    value = document
    for part in path.split("."):
        if isinstance(value, Mapping):
            if part not in value:
                return _MISSING
            value = value[part]
        elif isinstance(value, (list, tuple)):
            if not part.isdigit() or str(int(part)) != part:
                return _MISSING
            index = int(part)
            if index >= len(value):
                return _MISSING
            value = value[index]
        else:
            return _MISSING
    return value


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_to_string(v) for v in value)
    return str(value)


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def evaluate_condition(condition: PolicyCondition, field_value: Any) -> bool:
    if field_value is _MISSING:
        return False
    operator = condition.operator
    if operator == "equals":
        return _strict_equals(field_value, condition.value)
    if operator == "greater_than":
        return _to_number(field_value) > _to_number(condition.value)
    if operator == "less_than":
        return _to_number(field_value) < _to_number(condition.value)
    if operator == "contains":
        return _to_string(condition.value) in _to_string(field_value)
    if operator in ("in", "not_in"):
        if not isinstance(condition.value, (list, tuple)):
            return False
        member = any(_strict_equals(field_value, v) for v in condition.value)
        return member if operator == "in" else not member
    return False


def rule_confidence(rule: PolicyRule, document: Any) -> float:
    """Weighted share of the rule's conditions that match the document."""
    total_weight = 0.0
    matched_weight = 0.0
    for condition in rule.conditions:
        weight = condition.effective_weight
        total_weight += weight
        if evaluate_condition(condition, resolve_field(document, condition.field)):
            matched_weight += weight
    return matched_weight / total_weight if total_weight > 0 else 0.0


def _action_key(action: PolicyAction) -> str:
    return f"{action.type}-{json.dumps(action.parameters, default=str)}"


def deduplicate_actions(actions: List[PolicyAction]) -> List[PolicyAction]:
    seen = set()
    unique = []
    for action in actions:
        key = _action_key(action)
        if key in seen:
            continue
        seen.add(key)
        unique.append(action)
    return unique


def _no_risk_result() -> PolicyResult:
    return PolicyResult(
        triggered=False,
        rules=[],
        actions=[
            PolicyAction(
                type="ALLOW",
                parameters={"reason": "No policy rules triggered - standard processing", "channel": "GREEN"},
            )
        ],
        confidence=NO_RISK_CONFIDENCE,
        reason="No risk detected",
    )


class PolicyEngine:
    """
    Evaluates declarations against the rules of one PolicyPack.

    Every mutation builds a new pack and swaps the reference, so an evaluation
    in flight keeps reading the pack it started with.
    """

    def __init__(self, policy_pack: PolicyPack = None):
        self._pack = policy_pack if policy_pack is not None else default_policy_pack()
        self._write_lock = threading.Lock()

    @property
    def version(self) -> str:
        return self._pack.version

    def evaluate(self, context: Union[PolicyContext, Dict[str, Any]]) -> PolicyResult:
        pack = self._pack
        document = context.as_document() if isinstance(context, PolicyContext) else context

        rules = sorted((r for r in pack.rules if r.enabled), key=lambda r: r.priority)
        triggered: List[PolicyRule] = []
        actions: List[PolicyAction] = []
        reasons: List[str] = []
        max_confidence = 0.0

        for rule in rules:
            try:
                confidence = rule_confidence(rule, document)
            except Exception:
                # Fail-safe: a broken rule counts as not triggered
                logger.exception("Policy rule %s failed to evaluate", rule.id)
                continue
            if confidence <= TRIGGER_THRESHOLD:
                continue
            triggered.append(copy.deepcopy(rule))
            actions.extend(PolicyAction(type=a.type, parameters=copy.deepcopy(a.parameters)) for a in rule.actions)
            max_confidence = max(max_confidence, confidence)
            reasons.append(rule.description)

        if not triggered:
            logger.debug("Policy pack %s: no rules triggered", pack.version)
            return _no_risk_result()

        logger.info(
            "Policy pack %s: triggered %s (confidence %.2f)",
            pack.version,
            ", ".join(r.id for r in triggered),
            max_confidence,
        )
        return PolicyResult(
            triggered=True,
            rules=triggered,
            actions=deduplicate_actions(actions),
            confidence=max_confidence,
            reason="; ".join(reasons),
        )

    def update_policy_pack(self, policy_pack: Union[PolicyPack, Dict[str, Any]]) -> None:
        if not isinstance(policy_pack, PolicyPack):
            policy_pack = PolicyPack.from_dict(policy_pack)
        policy_pack = copy.deepcopy(policy_pack)
        with self._write_lock:
            self._pack = policy_pack
        logger.info("Policy pack replaced with version %s (%d rules)", policy_pack.version, len(policy_pack.rules))

    def get_policy_pack(self) -> PolicyPack:
        return copy.deepcopy(self._pack)

    def enable_rule(self, rule_id: str) -> bool:
        return self._set_enabled(rule_id, True)

    def disable_rule(self, rule_id: str) -> bool:
        return self._set_enabled(rule_id, False)

    def add_rule(self, rule: Union[PolicyRule, Dict[str, Any]]) -> None:
        if not isinstance(rule, PolicyRule):
            rule = PolicyRule.from_dict(rule)
        rule = copy.deepcopy(rule)

        def _add(pack: PolicyPack) -> bool:
            if pack.find_rule(rule.id) is not None:
                raise PolicyPackError(f"Rule {rule.id} already exists")
            pack.rules.append(rule)
            return True

        self._mutate(_add)
        logger.info("Policy rule %s added", rule.id)

    def remove_rule(self, rule_id: str) -> bool:
        def _remove(pack: PolicyPack) -> bool:
            rule = pack.find_rule(rule_id)
            if rule is None:
                return False
            pack.rules = [r for r in pack.rules if r is not rule]
            return True

        removed = self._mutate(_remove)
        if removed:
            logger.info("Policy rule %s removed", rule_id)
        return removed

    def _set_enabled(self, rule_id: str, enabled: bool) -> bool:
        def _toggle(pack: PolicyPack) -> bool:
            rule = pack.find_rule(rule_id)
            if rule is None:
                return False
            rule.enabled = enabled
            return True

        found = self._mutate(_toggle)
        if found:
            logger.info("Policy rule %s %s", rule_id, "enabled" if enabled else "disabled")
        return found

    def _mutate(self, change: Callable[[PolicyPack], bool]) -> bool:
        with self._write_lock:
            pack = copy.deepcopy(self._pack)
            changed = change(pack)
            if changed:
                pack.updated_at = datetime.now(timezone.utc)
                self._pack = pack
            return changed
