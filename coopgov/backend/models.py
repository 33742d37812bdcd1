from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CustomBaseModel(BaseModel):
    model_config = ConfigDict(
        json_encoders={UUID: str, datetime: lambda v: v.isoformat()},
        arbitrary_types_allowed=True,
    )


class PolicyModel(BaseModel):
    """Policy sub-structure stored inside a coop config; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProposalStatus(str, Enum):
    SUBMITTED = "submitted"
    VOTABLE = "votable"
    APPROVED = "approved"
    FUNDED = "funded"
    REJECTED = "rejected"
    FAILED = "failed"
    WITHDRAWN = "withdrawn"

    def __str__(self):
        return self.value


class Decision(str, Enum):
    ADVANCE = "advance"
    BLOCK = "block"
    NEEDS_INFO = "needs_info"
    UNKNOWN = "unknown"

    def __str__(self):
        return self.value


class MissingDataSeverity(str, Enum):
    BLOCKER = "BLOCKER"
    SOFT = "SOFT"
    INFO = "INFO"

    def __str__(self):
        return self.value


class ApprovalTier(str, Enum):
    AUTO = "auto"
    ADMIN = "admin"
    COUNCIL = "council"
    NONE = "none"

    def __str__(self):
        return self.value


class RevisionSource(str, Enum):
    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    ALTERNATIVE = "alternative"

    def __str__(self):
        return self.value


class AmendmentKind(str, Enum):
    CHARTER = "charter"
    CONFIG = "config"

    def __str__(self):
        return self.value


class AmendmentStatus(str, Enum):
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    REJECTED = "REJECTED"
    SUPERSEDED = "SUPERSEDED"

    def __str__(self):
        return self.value


class VoteChoice(str, Enum):
    FOR = "FOR"
    AGAINST = "AGAINST"
    ABSTAIN = "ABSTAIN"

    def __str__(self):
        return self.value


class CommentAlignment(str, Enum):
    ALIGNED = "ALIGNED"
    NEUTRAL = "NEUTRAL"
    MISALIGNED = "MISALIGNED"

    def __str__(self):
        return self.value


class ReactionType(str, Enum):
    SUPPORT = "SUPPORT"
    CONCERN = "CONCERN"

    def __str__(self):
        return self.value


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class Caller(CustomBaseModel):
    """Authenticated caller as resolved by the identity layer."""

    wallet_address: str
    is_admin: bool = False


# ---------------------------------------------------------------------------
# Coop config policy structures
# ---------------------------------------------------------------------------


class MissionGoal(PolicyModel):
    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    priority_weight: float = Field(ge=0.0, le=1.0)
    description: Optional[str] = None
    domain: Optional[str] = None
    expert_required: bool = False


class StructuralWeights(PolicyModel):
    feasibility: float = Field(ge=0.0, le=1.0)
    risk: float = Field(ge=0.0, le=1.0)
    accountability: float = Field(ge=0.0, le=1.0)


class ScoreMix(PolicyModel):
    mission_weight: float = Field(ge=0.0, le=1.0)
    structural_weight: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_not_empty(self) -> "ScoreMix":
        if self.mission_weight + self.structural_weight <= 0:
            raise ValueError("score mix weights cannot both be zero")
        return self


class ProposalCategoryOption(PolicyModel):
    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    is_active: bool = True


class SectorExclusion(PolicyModel):
    value: str = Field(min_length=1)
    description: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_bare_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"value": data}
        return data


class ScorerAgent(PolicyModel):
    """A domain scorer that re-scores the goals it owns in a dedicated model call."""

    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    domain: Optional[str] = None
    goal_keys: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    instructions: Optional[str] = None
    enabled: bool = True


class CoopConfigBase(CustomBaseModel):
    """Policy fields of a coop config. All optional so the model doubles as a partial update."""

    charter_text: Optional[str] = None
    mission_goals: Optional[List[MissionGoal]] = None
    structural_weights: Optional[StructuralWeights] = None
    score_mix: Optional[ScoreMix] = None
    screening_pass_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    strong_goal_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    mission_min_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    structural_gate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    quorum_percent: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    approval_threshold_percent: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    voting_window_days: Optional[int] = Field(default=None, ge=1)
    sc_voting_cap_percent: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    proposal_categories: Optional[List[ProposalCategoryOption]] = None
    sector_exclusions: Optional[List[SectorExclusion]] = None
    scorer_agents: Optional[List[ScorerAgent]] = None
    min_sc_balance_to_submit: Optional[float] = Field(default=None, ge=0.0)
    ai_auto_approve_threshold_usd: Optional[float] = Field(default=None, ge=0.0)
    council_vote_threshold_usd: Optional[float] = Field(default=None, ge=0.0)

    @field_validator("mission_goals")
    @classmethod
    def check_unique_goal_keys(cls, goals):
        if goals is not None:
            keys = [goal.key for goal in goals]
            if len(keys) != len(set(keys)):
                raise ValueError("mission goal keys must be unique")
        return goals

    @field_validator("proposal_categories")
    @classmethod
    def check_unique_category_keys(cls, categories):
        if categories is not None:
            keys = [category.key for category in categories]
            if len(keys) != len(set(keys)):
                raise ValueError("proposal category keys must be unique")
        return categories


# Names of every policy field, in declaration order
POLICY_FIELDS = tuple(CoopConfigBase.model_fields.keys())


class CoopConfigCreate(CoopConfigBase):
    coop_id: str
    version: int = 1
    is_active: bool = True
    created_by: Optional[str] = None


class CoopConfig(CoopConfigCreate):
    id: UUID
    created_at: datetime
    updated_at: datetime

    def policy_snapshot(self) -> Dict[str, Any]:
        """Policy fields as plain JSON values."""
        return self.model_dump(mode="json", include=set(POLICY_FIELDS))

    def active_category_keys(self) -> List[str]:
        return [c.key for c in self.proposal_categories or [] if c.is_active]

    def goal_keys(self) -> List[str]:
        return [goal.key for goal in self.mission_goals or []]


class ConfigDiffEntry(CustomBaseModel):
    field: str
    before: Any = None
    after: Any = None


class CoopConfigAuditCreate(CustomBaseModel):
    coop_id: str
    config_version: int
    changed_by: str
    reason: str
    diff: List[ConfigDiffEntry] = Field(default_factory=list)
    amendment_id: Optional[UUID] = None


class CoopConfigAudit(CoopConfigAuditCreate):
    id: UUID
    coop_config_id: UUID
    changed_at: datetime


# ---------------------------------------------------------------------------
# Amendments
# ---------------------------------------------------------------------------


class AmendmentCreate(CustomBaseModel):
    coop_id: str
    kind: AmendmentKind
    section: str
    proposed_changes: Dict[str, Any] = Field(default_factory=dict)
    current_snapshot: Dict[str, Any] = Field(default_factory=dict)
    proposed_text: Optional[str] = None
    current_text: Optional[str] = None
    reason: str
    proposed_by: str


class AmendmentReview(CustomBaseModel):
    status: AmendmentStatus
    reviewed_by: str
    reviewed_at: datetime
    review_reason: Optional[str] = None


class Amendment(AmendmentCreate):
    id: UUID
    status: AmendmentStatus = AmendmentStatus.PENDING
    proposed_at: datetime
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_reason: Optional[str] = None


class AmendmentFilter(CustomBaseModel):
    coop_id: Optional[str] = None
    kind: Optional[AmendmentKind] = None
    section: Optional[str] = None
    status: Optional[AmendmentStatus] = None


# ---------------------------------------------------------------------------
# Evaluation payload
# ---------------------------------------------------------------------------


class Budget(CustomBaseModel):
    currency: str = "USD"
    amount_requested: float = Field(ge=0.0)


class Region(CustomBaseModel):
    code: Optional[str] = None
    name: Optional[str] = None


class ProposalMetadata(CustomBaseModel):
    """Submitter-supplied metadata; missing values are filled from the evaluator's extraction."""

    title: Optional[str] = None
    summary: Optional[str] = None
    category: Optional[str] = None
    budget: Optional[Budget] = None
    region: Optional[Region] = None


class MissingDataItem(CustomBaseModel):
    field: Optional[str] = None
    question: str
    severity: MissingDataSeverity
    goal_ids: List[str] = Field(default_factory=list)


class AuditCheck(CustomBaseModel):
    name: str
    passed: bool
    note: Optional[str] = None


class Alternative(CustomBaseModel):
    label: str
    rationale: str
    changes: Dict[str, Any] = Field(default_factory=dict)
    estimated_goal_scores: Dict[str, float] = Field(default_factory=dict)
    estimated_composite: Optional[float] = None
    data_needed: List[str] = Field(default_factory=list)
    # Estimates stay unverified until an official re-evaluation runs
    verified: bool = False


class GoalScoreResult(CustomBaseModel):
    goal_id: str
    label: str
    domain: Optional[str] = None
    weight: float
    score: float = Field(ge=0.0, le=1.0)
    rationale: Optional[str] = None


class StructuralScores(CustomBaseModel):
    feasibility: float = Field(ge=0.0, le=1.0)
    risk: float = Field(ge=0.0, le=1.0)
    accountability: float = Field(ge=0.0, le=1.0)


class EvaluationThresholds(CustomBaseModel):
    screening_pass_threshold: float
    strong_goal_threshold: float
    mission_min_threshold: float
    structural_gate: float


class Evaluation(CustomBaseModel):
    """Full scoring payload for one revision."""

    engine_version: str
    config_version: int
    title: str
    summary: Optional[str] = None
    category: Optional[str] = None
    budget: Budget
    region: Optional[Region] = None
    goal_scores: List[GoalScoreResult]
    structural_scores: StructuralScores
    mission_weighted_score: float
    structural_weighted_score: float
    composite_score: float
    score_mix: ScoreMix
    structural_weights: StructuralWeights
    thresholds: EvaluationThresholds
    decision: Decision
    decision_reasons: List[str] = Field(default_factory=list)
    missing_data: List[MissingDataItem] = Field(default_factory=list)
    audit_checks: List[AuditCheck] = Field(default_factory=list)
    alternatives: List[Alternative] = Field(default_factory=list)
    best_alternative: Optional[Alternative] = None


class AdjustedScores(CustomBaseModel):
    """Scores of the latest revision recomputed with expert overrides applied."""

    revision_number: int
    mission_weighted_score: float
    composite_score: float
    passes_threshold: bool
    adjusted_goal_ids: List[str] = Field(default_factory=list)
    updated_at: datetime


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


class ProposalBase(CustomBaseModel):
    title: Optional[str] = None
    summary: Optional[str] = None
    raw_text: Optional[str] = None
    category: Optional[str] = None
    budget: Optional[Budget] = None
    region: Optional[Region] = None
    status: Optional[ProposalStatus] = ProposalStatus.SUBMITTED
    decision: Optional[Decision] = Decision.UNKNOWN
    decision_reasons: Optional[List[str]] = None
    missing_data: Optional[List[MissingDataItem]] = None
    alternatives: Optional[List[Alternative]] = None
    best_alternative: Optional[Alternative] = None
    audit_checks: Optional[List[AuditCheck]] = None
    composite_score: Optional[float] = None
    council_required: Optional[bool] = False
    council_vote_threshold_usd: Optional[float] = None
    approval_tier: Optional[ApprovalTier] = ApprovalTier.NONE
    current_revision: Optional[int] = None
    config_version: Optional[int] = None
    engine_version: Optional[str] = None
    adjusted_scores: Optional[AdjustedScores] = None
    votable_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    withdrawn_by: Optional[str] = None


class ProposalCreate(ProposalBase):
    coop_id: str
    proposer_wallet: str


class Proposal(ProposalBase):
    id: UUID
    coop_id: str
    proposer_wallet: str
    created_at: datetime
    updated_at: datetime


class ProposalFilter(CustomBaseModel):
    coop_id: Optional[str] = None
    status: Optional[ProposalStatus] = None
    statuses: Optional[List[ProposalStatus]] = None
    proposer_wallet: Optional[str] = None
    category: Optional[str] = None


class ProposalRevisionCreate(CustomBaseModel):
    revision_number: int = Field(ge=1)
    raw_text: str
    evaluation: Evaluation
    decision: Decision
    decision_reasons: List[str] = Field(default_factory=list)
    audit_checks: List[AuditCheck] = Field(default_factory=list)
    status: ProposalStatus
    engine_version: str
    config_version: int
    source: RevisionSource = RevisionSource.SUBMIT
    alternative_index: Optional[int] = None
    submitted_by: str
    submitted_metadata: ProposalMetadata = Field(default_factory=ProposalMetadata)


class ProposalRevision(ProposalRevisionCreate):
    id: UUID
    proposal_id: UUID
    submitted_at: datetime


# ---------------------------------------------------------------------------
# Goal scores and expert overrides
# ---------------------------------------------------------------------------


class GoalScoreCreate(CustomBaseModel):
    goal_id: str
    domain: Optional[str] = None
    ai_score: float = Field(ge=0.0, le=1.0)


class GoalScore(GoalScoreCreate):
    id: UUID
    proposal_id: UUID
    revision_number: int
    expert_score: Optional[float] = None
    final_score: float
    expert_wallet: Optional[str] = None
    expert_reason: Optional[str] = None
    updated_at: datetime


class ScoreAdjustmentCreate(CustomBaseModel):
    goal_score_id: UUID
    from_score: float
    to_score: float
    reason: str
    expert_wallet: str


class ScoreAdjustment(ScoreAdjustmentCreate):
    id: UUID
    created_at: datetime


class ExpertAssignmentCreate(CustomBaseModel):
    wallet_address: str
    domain: str
    assigned_by: str


class ExpertAssignment(ExpertAssignmentCreate):
    id: UUID
    is_active: bool = True
    assigned_at: datetime


class ExpertAssignmentFilter(CustomBaseModel):
    wallet_address: Optional[str] = None
    domain: Optional[str] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Council votes
# ---------------------------------------------------------------------------


class CouncilVoteCreate(CustomBaseModel):
    proposal_id: UUID
    voter_wallet: str
    choice: VoteChoice


class CouncilVote(CouncilVoteCreate):
    id: UUID
    created_at: datetime
    updated_at: datetime


class VoteTally(CustomBaseModel):
    for_count: int = 0
    against_count: int = 0
    abstain_count: int = 0
    eligible_pool: int = 0
    required_votes: int = 0
    quorum_met: bool = False

    @property
    def total(self) -> int:
        return self.for_count + self.against_count + self.abstain_count


class CouncilVoteResult(CustomBaseModel):
    vote: CouncilVote
    tally: VoteTally
    status: ProposalStatus
    status_changed: bool = False


# ---------------------------------------------------------------------------
# Community
# ---------------------------------------------------------------------------


class CommentEvaluationCreate(CustomBaseModel):
    comment_id: UUID
    alignment: CommentAlignment
    score: float = Field(ge=0.0, le=1.0)
    analysis: str
    goals_impacted: List[str] = Field(default_factory=list)


class CommentEvaluation(CommentEvaluationCreate):
    id: UUID
    created_at: datetime


class CommentCreate(CustomBaseModel):
    proposal_id: UUID
    author_wallet: str
    content: str


class Comment(CommentCreate):
    id: UUID
    created_at: datetime
    ai_evaluation: Optional[CommentEvaluation] = None


class Reaction(CustomBaseModel):
    proposal_id: UUID
    wallet_address: str
    reaction: ReactionType
    created_at: datetime


class ReactionSummary(CustomBaseModel):
    support: int = 0
    concern: int = 0
    my_reaction: Optional[ReactionType] = None
