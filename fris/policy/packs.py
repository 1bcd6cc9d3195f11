import json
from pathlib import Path

from fris.policy.models import PolicyPack


DEFAULT_POLICY_VERSION = "2025-11-02-01"

DEFAULT_POLICY_PACK_DOCUMENT = {
    "version": DEFAULT_POLICY_VERSION,
    "name": "FRIS Default Policy Pack",
    "description": "Default fraud detection and revenue protection policies for Nigeria Customs",
    "globalSettings": {
        "defaultHoldTtl": 720,
        "defaultStopTtl": 1440,
        "maxRiskScore": 1.0,
        "enableMLScoring": True,
    },
    "rules": [
        {
            "id": "UVAL_SEVERE",
            "name": "Severe Undervaluation Detection",
            "description": "Detect severe undervaluation compared to reference price bands",
            "enabled": True,
            "priority": 1,
            "conditions": [
                {"field": "riskScores.undervaluation", "operator": "greater_than", "value": 0.85, "weight": 1.0},
                {"field": "items.0.invoice_value_usd", "operator": "less_than", "value": 1000, "weight": 0.5},
            ],
            "actions": [
                {
                    "type": "HOLD",
                    "parameters": {
                        "ttl": 720,
                        "reason": "Severe undervaluation detected - manual review required",
                        "escalationLevel": "VALUATION",
                    },
                }
            ],
        },
        {
            "id": "DOC_FORGERY_HIGH",
            "name": "Document Forgery Detection",
            "description": "High confidence document forgery detection",
            "enabled": True,
            "priority": 1,
            "conditions": [
                {"field": "riskScores.doc_forgery", "operator": "greater_than", "value": 0.80, "weight": 1.0},
            ],
            "actions": [
                {
                    "type": "STOP",
                    "parameters": {
                        "ttl": 1440,
                        "reason": "High confidence document forgery detected",
                        "escalationLevel": "ENFORCEMENT",
                    },
                }
            ],
        },
        {
            "id": "NETWORK_RISK_HIGH",
            "name": "Network Risk Detection",
            "description": "Detect high-risk network patterns and entity relationships",
            "enabled": True,
            "priority": 2,
            "conditions": [
                {"field": "riskScores.network_risk", "operator": "greater_than", "value": 0.75, "weight": 1.0},
                {
                    "field": "items.0.declared_hs",
                    "operator": "in",
                    "value": ["8703", "2710", "2402", "2208", "8517"],
                    "weight": 0.8,
                },
            ],
            "actions": [
                {
                    "type": "HOLD",
                    "parameters": {
                        "ttl": 480,
                        "reason": "High network risk detected - investigate entity relationships",
                        "escalationLevel": "ENFORCEMENT",
                    },
                }
            ],
        },
        {
            "id": "ORIGIN_FHIGH_RISK",
            "name": "High Risk Origin Detection",
            "description": "Detect shipments from high-risk origin countries",
            "enabled": True,
            "priority": 3,
            "conditions": [
                {"field": "riskScores.origin_fraud", "operator": "greater_than", "value": 0.70, "weight": 0.8},
                {"field": "items.0.country_origin", "operator": "in", "value": ["CN", "HK", "SG", "AE"], "weight": 0.6},
            ],
            "actions": [
                {
                    "type": "HOLD",
                    "parameters": {
                        "ttl": 360,
                        "reason": "High risk origin detected - enhanced scrutiny required",
                        "escalationLevel": "VALUATION",
                    },
                }
            ],
        },
        {
            "id": "WEEKEND_FILING",
            "name": "Weekend Filing Detection",
            "description": "Detect declarations filed during weekends or holidays",
            "enabled": True,
            "priority": 4,
            "conditions": [
                {"field": "declaration.lodgement_ts", "operator": "contains", "value": "weekend", "weight": 0.5},
            ],
            "actions": [
                {
                    "type": "NOTIFY",
                    "parameters": {
                        "reason": "Weekend filing detected - monitor for suspicious patterns",
                        "notificationLevel": "INFO",
                    },
                }
            ],
        },
        {
            "id": "LOW_RISK_FAST_TRACK",
            "name": "Low Risk Fast Track",
            "description": "Fast track low-risk declarations for quick clearance",
            "enabled": True,
            "priority": 5,
            "conditions": [
                {"field": "riskScores.overall", "operator": "less_than", "value": 0.25, "weight": 1.0},
                {"field": "items.0.invoice_value_usd", "operator": "less_than", "value": 50000, "weight": 0.8},
            ],
            "actions": [
                {
                    "type": "ALLOW",
                    "parameters": {"reason": "Low risk declaration - fast track clearance", "channel": "GREEN"},
                }
            ],
        },
        {
            "id": "HIGH_VALUE_SHIPMENT",
            "name": "High Value Shipment",
            "description": "Flag high-value shipments for enhanced review",
            "enabled": True,
            "priority": 3,
            "conditions": [
                {"field": "items.0.invoice_value_usd", "operator": "greater_than", "value": 100000, "weight": 0.7},
            ],
            "actions": [
                {
                    "type": "HOLD",
                    "parameters": {
                        "ttl": 240,
                        "reason": "High value shipment - enhanced review required",
                        "escalationLevel": "VALUATION",
                    },
                }
            ],
        },
        {
            "id": "MISCLASSIFICATION_HIGH",
            "name": "HS Misclassification Detection",
            "description": "Detect potential HS code misclassification",
            "enabled": True,
            "priority": 2,
            "conditions": [
                {"field": "riskScores.misclassification", "operator": "greater_than", "value": 0.80, "weight": 1.0},
            ],
            "actions": [
                {
                    "type": "HOLD",
                    "parameters": {
                        "ttl": 480,
                        "reason": "Potential HS misclassification - expert review required",
                        "escalationLevel": "VALUATION",
                    },
                }
            ],
        },
    ],
    "createdAt": "2025-01-01T00:00:00Z",
    "updatedAt": "2025-11-02T00:00:00Z",
}


def default_policy_pack() -> PolicyPack:
    """Fresh copy of the built-in pack; callers may mutate it freely."""
    return PolicyPack.from_dict(json.loads(json.dumps(DEFAULT_POLICY_PACK_DOCUMENT)))


def load_policy_pack(path) -> PolicyPack:
    with open(Path(path), "r", encoding="utf-8") as f:
        return PolicyPack.from_dict(json.load(f))
