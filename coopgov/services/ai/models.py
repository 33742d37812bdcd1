"""Structured output schemas for the AI evaluation calls."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from coopgov.backend.models import CommentAlignment


class ExtractedProposalFields(BaseModel):
    """Fields the model reads out of the free-text proposal."""

    title: str = Field(description="Short title for the proposal (max 120 characters)")
    summary: str = Field(description="Two to four sentence neutral summary")
    category: Optional[str] = Field(
        default=None, description="Best matching category key from the allowed list"
    )
    budget_amount: Optional[float] = Field(
        default=None, description="Total amount requested, as a number", ge=0.0
    )
    currency: Optional[str] = Field(default="USD", description="ISO currency code")
    region: Optional[str] = Field(
        default=None, description="Region or locality the proposal serves"
    )


class GoalAssessment(BaseModel):
    goal_id: str = Field(description="Mission goal key exactly as listed")
    score: float = Field(description="Score from 0.0 to 1.0", ge=0.0, le=1.0)
    rationale: str = Field(description="One or two sentences of reasoning")


class StructuralAssessment(BaseModel):
    feasibility: float = Field(
        description="1.0 = clearly deliverable with the stated resources", ge=0.0, le=1.0
    )
    risk: float = Field(
        description="1.0 = risks are low or well mitigated, 0.0 = unmanaged risk",
        ge=0.0,
        le=1.0,
    )
    accountability: float = Field(
        description="1.0 = clear owners, milestones and reporting", ge=0.0, le=1.0
    )
    rationale: Optional[str] = Field(default=None, description="Short reasoning")


class AuditNote(BaseModel):
    name: str = Field(description="Short snake_case name of the check")
    passed: bool
    note: Optional[str] = None


class AlternativeSuggestion(BaseModel):
    label: str = Field(description="Short name for the alternative")
    rationale: str = Field(description="Why this change would improve the proposal")
    changes: Dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Field edits keyed by field name: title, summary, category, "
            "budget.amount_requested, budget.currency, region.name"
        ),
    )
    estimated_goal_scores: List[GoalAssessment] = Field(
        default_factory=list,
        description="Estimated goal scores if the change is made (unverified)",
    )
    data_needed: List[str] = Field(
        default_factory=list, description="Information needed to confirm the estimate"
    )


class ProposalAssessment(BaseModel):
    """Output of the primary proposal evaluation call."""

    extracted: ExtractedProposalFields
    goal_scores: List[GoalAssessment] = Field(
        description="One entry for every mission goal listed"
    )
    structural_scores: StructuralAssessment
    audit_notes: List[AuditNote] = Field(default_factory=list)
    alternatives: List[AlternativeSuggestion] = Field(
        default_factory=list, description="Zero to three concrete alternatives"
    )
    missing_information: List[str] = Field(
        default_factory=list,
        description="Questions the proposer should answer to improve the evaluation",
    )


class DomainGoalAssessment(BaseModel):
    """Output of a scorer agent call covering the goals of one domain."""

    goal_scores: List[GoalAssessment]


class CommentAssessment(BaseModel):
    alignment: Optional[CommentAlignment] = Field(
        default=None, description="ALIGNED, NEUTRAL or MISALIGNED"
    )
    score: float = Field(description="Alignment from 0.0 to 1.0", ge=0.0, le=1.0)
    analysis: str = Field(description="One to three sentences")
    goals_impacted: List[str] = Field(
        default_factory=list, description="Mission goal keys the comment touches"
    )
