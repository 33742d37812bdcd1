"""Documented defaults seeded into a coop's first config version."""

from typing import Any, Dict

DEFAULT_CHARTER_TEXT = (
    "The cooperative funds projects that keep income, ownership and spending "
    "inside the community. Proposals are judged on how well they stabilise "
    "member income, build community-owned assets, reduce economic leakage and "
    "expand exports, and on whether they can be delivered accountably."
)

DEFAULT_MISSION_GOALS = [
    {
        "key": "income_stability",
        "label": "Income Stability",
        "priority_weight": 0.35,
        "description": "Creates steady, predictable income for members.",
        "domain": "finance",
    },
    {
        "key": "asset_creation",
        "label": "Asset Creation",
        "priority_weight": 0.25,
        "description": "Builds assets the community owns and controls.",
        "domain": "real_estate",
    },
    {
        "key": "leakage_reduction",
        "label": "Leakage Reduction",
        "priority_weight": 0.20,
        "description": "Keeps spending circulating inside the community.",
        "domain": "economics",
    },
    {
        "key": "export_expansion",
        "label": "Export Expansion",
        "priority_weight": 0.20,
        "description": "Sells community goods and services to outside markets.",
        "domain": "trade",
    },
]

DEFAULT_STRUCTURAL_WEIGHTS = {"feasibility": 0.40, "risk": 0.35, "accountability": 0.25}

DEFAULT_SCORE_MIX = {"mission_weight": 0.6, "structural_weight": 0.4}

DEFAULT_PROPOSAL_CATEGORIES = [
    {"key": "business_funding", "label": "Business Funding", "is_active": True},
    {"key": "procurement", "label": "Procurement", "is_active": True},
    {"key": "infrastructure", "label": "Infrastructure", "is_active": True},
    {"key": "transport", "label": "Transport", "is_active": True},
    {"key": "wallet_incentive", "label": "Wallet Incentive", "is_active": True},
    {"key": "governance", "label": "Governance", "is_active": True},
    {"key": "other", "label": "Other", "is_active": True},
]

DEFAULT_SECTOR_EXCLUSIONS = [
    {"value": "fashion", "description": "Low asset retention"},
    {"value": "restaurant", "description": "High failure rate, low leakage reduction"},
    {"value": "cafe", "description": "High failure rate, low leakage reduction"},
    {"value": "food truck", "description": "Mobile, weak asset creation"},
    {"value": "personality brand", "description": "Value tied to one individual"},
    {"value": "lifestyle brand", "description": "Consumption-driven, weak exports"},
]


def default_policy() -> Dict[str, Any]:
    """Return a fresh dict of every default policy field."""
    return {
        "charter_text": DEFAULT_CHARTER_TEXT,
        "mission_goals": [dict(goal) for goal in DEFAULT_MISSION_GOALS],
        "structural_weights": dict(DEFAULT_STRUCTURAL_WEIGHTS),
        "score_mix": dict(DEFAULT_SCORE_MIX),
        "screening_pass_threshold": 0.6,
        "strong_goal_threshold": 0.70,
        "mission_min_threshold": 0.50,
        "structural_gate": 0.65,
        "quorum_percent": 15.0,
        "approval_threshold_percent": 51.0,
        "voting_window_days": 7,
        "sc_voting_cap_percent": 2.0,
        "proposal_categories": [dict(c) for c in DEFAULT_PROPOSAL_CATEGORIES],
        "sector_exclusions": [dict(e) for e in DEFAULT_SECTOR_EXCLUSIONS],
        "scorer_agents": [],
        "min_sc_balance_to_submit": 0.0,
        "ai_auto_approve_threshold_usd": 500.0,
        "council_vote_threshold_usd": 5000.0,
    }
