"""
Policy engine: rule-weighted evaluation of customs declarations against a
versioned, replaceable policy pack.
"""

from .models import (
    PolicyAction,
    PolicyCondition,
    PolicyContext,
    PolicyPack,
    PolicyPackError,
    PolicyResult,
    PolicyRule,
    GlobalSettings,
)
from .engine import PolicyEngine
from .packs import DEFAULT_POLICY_VERSION, default_policy_pack, load_policy_pack

__all__ = [
    "PolicyAction",
    "PolicyCondition",
    "PolicyContext",
    "PolicyPack",
    "PolicyPackError",
    "PolicyResult",
    "PolicyRule",
    "GlobalSettings",
    "PolicyEngine",
    "DEFAULT_POLICY_VERSION",
    "default_policy_pack",
    "load_policy_pack",
]
