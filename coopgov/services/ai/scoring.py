"""Proposal scoring and screening decision.

`build_evaluation` is a pure function of (text, metadata, config, assessment,
engine version): the same inputs always produce the same evaluation, which
keeps stored revisions reproducible. `ScoringEngine` wraps it with the call
to the AI evaluator, a bounded timeout and a retry, and fails closed when the
evaluator cannot produce a complete assessment.
"""

import asyncio
import re
from typing import Dict, Iterable, List, Optional, Tuple

from coopgov.backend.models import (
    Alternative,
    ApprovalTier,
    AuditCheck,
    Budget,
    CoopConfig,
    Decision,
    Evaluation,
    EvaluationThresholds,
    GoalScoreResult,
    MissingDataItem,
    MissingDataSeverity,
    MissionGoal,
    ProposalMetadata,
    Region,
    ScoreMix,
    StructuralScores,
    StructuralWeights,
)
from coopgov.config import config as app_config
from coopgov.lib.errors import UpstreamFailureError
from coopgov.lib.logger import configure_logger
from coopgov.services.ai.evaluator import AbstractProposalEvaluator
from coopgov.services.ai.models import ProposalAssessment

logger = configure_logger(__name__)

SECTOR_EXCLUSION_CHECK = "sector_exclusions"
CATEGORY_CHECK = "category_valid"
BUDGET_CHECK = "budget_present"


class MalformedAssessmentError(ValueError):
    """The evaluator's output does not cover the coop's goals."""


def _round(value: float) -> float:
    return round(value, 4)


def weighted_mission_score(
    goal_scores: Dict[str, float], goals: Iterable[MissionGoal]
) -> float:
    """Priority-weighted mean of goal scores; a plain mean when all weights are zero."""
    goals = list(goals)
    if not goals:
        return 0.0
    total_weight = sum(goal.priority_weight for goal in goals)
    if total_weight <= 0:
        return sum(goal_scores.get(goal.key, 0.0) for goal in goals) / len(goals)
    return (
        sum(goal_scores.get(goal.key, 0.0) * goal.priority_weight for goal in goals)
        / total_weight
    )


def weighted_structural_score(
    scores: StructuralScores, weights: StructuralWeights
) -> float:
    total_weight = weights.feasibility + weights.risk + weights.accountability
    if total_weight <= 0:
        return (scores.feasibility + scores.risk + scores.accountability) / 3
    return (
        scores.feasibility * weights.feasibility
        + scores.risk * weights.risk
        + scores.accountability * weights.accountability
    ) / total_weight


def composite_score(mission: float, structural: float, mix: ScoreMix) -> float:
    return min(1.0, max(0.0, mix.mission_weight * mission + mix.structural_weight * structural))


def check_assessment(assessment: ProposalAssessment, config: CoopConfig) -> None:
    """Raise MalformedAssessmentError unless every configured goal has a score."""
    scored = {score.goal_id for score in assessment.goal_scores}
    missing = [key for key in config.goal_keys() if key not in scored]
    if missing:
        raise MalformedAssessmentError(
            f"Evaluator returned no score for goals: {', '.join(missing)}"
        )


def merge_metadata(
    metadata: ProposalMetadata, assessment: ProposalAssessment
) -> ProposalMetadata:
    """Submitter-supplied metadata wins; the evaluator's extraction fills the gaps."""
    extracted = assessment.extracted
    budget = metadata.budget
    if budget is None:
        budget = Budget(
            currency=extracted.currency or "USD",
            amount_requested=extracted.budget_amount or 0.0,
        )
    region = metadata.region
    if region is None and extracted.region:
        region = Region(name=extracted.region)
    return ProposalMetadata(
        title=metadata.title or extracted.title,
        summary=metadata.summary or extracted.summary,
        category=metadata.category or extracted.category,
        budget=budget,
        region=region,
    )


def matched_exclusions(texts: Iterable[Optional[str]], config: CoopConfig) -> List[str]:
    haystack = " ".join(text.lower() for text in texts if text)
    matched = []
    for exclusion in config.sector_exclusions or []:
        pattern = r"\b" + re.escape(exclusion.value.lower()) + r"s?\b"
        if re.search(pattern, haystack):
            matched.append(exclusion.value)
    return matched


def run_audit_checks(
    metadata: ProposalMetadata, config: CoopConfig
) -> List[AuditCheck]:
    """Deterministic compliance checks against the coop's policy."""
    matched = matched_exclusions(
        [metadata.title, metadata.summary, metadata.category], config
    )
    checks = [
        AuditCheck(
            name=SECTOR_EXCLUSION_CHECK,
            passed=not matched,
            note=f"Matches excluded sectors: {', '.join(matched)}" if matched else None,
        )
    ]

    active = config.active_category_keys()
    category_ok = metadata.category in active
    checks.append(
        AuditCheck(
            name=CATEGORY_CHECK,
            passed=category_ok,
            note=None
            if category_ok
            else f"Category '{metadata.category}' is not one of: {', '.join(active)}",
        )
    )

    budget_ok = metadata.budget is not None and metadata.budget.amount_requested > 0
    checks.append(
        AuditCheck(
            name=BUDGET_CHECK,
            passed=budget_ok,
            note=None if budget_ok else "No requested amount was found",
        )
    )
    return checks


def _failed(checks: List[AuditCheck], name: str) -> Optional[AuditCheck]:
    for check in checks:
        if check.name == name and not check.passed:
            return check
    return None


def decide(
    goal_results: List[GoalScoreResult],
    structural: float,
    composite: float,
    config: CoopConfig,
    audit_checks: List[AuditCheck],
) -> Tuple[Decision, List[str], List[MissingDataItem]]:
    """Turn scores into a screening decision.

    - structural score below the structural gate, or an excluded sector: block
    - composite at/above the pass threshold with no goal below the mission
      minimum and no blocking data gap: advance
    - otherwise needs_info, with one missing-data entry per goal under the
      strong-goal threshold (BLOCKER if also under the mission minimum)
    """
    reasons: List[str] = []
    exclusion = _failed(audit_checks, SECTOR_EXCLUSION_CHECK)
    if structural < config.structural_gate:
        reasons.append(
            f"Structural score {structural:.2f} is below the structural gate "
            f"{config.structural_gate:.2f}"
        )
    if exclusion is not None:
        reasons.append(exclusion.note or "Proposal falls in an excluded sector")
    if reasons:
        return Decision.BLOCK, reasons, []

    below_min = [g for g in goal_results if g.score < config.mission_min_threshold]
    category = _failed(audit_checks, CATEGORY_CHECK)
    budget = _failed(audit_checks, BUDGET_CHECK)

    if (
        composite >= config.screening_pass_threshold
        and not below_min
        and category is None
        and budget is None
    ):
        reasons.append(
            f"Composite score {composite:.2f} meets the screening threshold "
            f"{config.screening_pass_threshold:.2f}"
        )
        return Decision.ADVANCE, reasons, []

    missing: List[MissingDataItem] = []
    if composite < config.screening_pass_threshold:
        reasons.append(
            f"Composite score {composite:.2f} is below the screening threshold "
            f"{config.screening_pass_threshold:.2f}"
        )
    for goal in below_min:
        reasons.append(
            f"{goal.label} scored {goal.score:.2f}, below the mission minimum "
            f"{config.mission_min_threshold:.2f}"
        )
    for goal in goal_results:
        if goal.score < config.strong_goal_threshold:
            severity = (
                MissingDataSeverity.BLOCKER
                if goal.score < config.mission_min_threshold
                else MissingDataSeverity.SOFT
            )
            missing.append(
                MissingDataItem(
                    field=goal.goal_id,
                    question=f"What evidence shows this proposal advances {goal.label}?",
                    severity=severity,
                    goal_ids=[goal.goal_id],
                )
            )
    if category is not None:
        reasons.append(category.note)
        missing.append(
            MissingDataItem(
                field="category",
                question="Which active proposal category does this fall under?",
                severity=MissingDataSeverity.BLOCKER,
            )
        )
    if budget is not None:
        reasons.append(budget.note)
        missing.append(
            MissingDataItem(
                field="budget",
                question="How much funding is requested, and in which currency?",
                severity=MissingDataSeverity.BLOCKER,
            )
        )
    if not missing:
        missing.append(
            MissingDataItem(
                field="composite_score",
                question="Which details would strengthen the overall case?",
                severity=MissingDataSeverity.INFO,
            )
        )
    return Decision.NEEDS_INFO, reasons, missing


def build_alternatives(
    assessment: ProposalAssessment,
    goal_scores: Dict[str, float],
    structural: float,
    config: CoopConfig,
) -> List[Alternative]:
    """Attach an estimated composite to each suggestion. Estimates are never verified here."""
    goals = config.mission_goals or []
    alternatives = []
    for suggestion in assessment.alternatives:
        estimated = dict(goal_scores)
        for score in suggestion.estimated_goal_scores:
            if score.goal_id in estimated:
                estimated[score.goal_id] = score.score
        estimated_mission = weighted_mission_score(estimated, goals)
        alternatives.append(
            Alternative(
                label=suggestion.label,
                rationale=suggestion.rationale,
                changes=suggestion.changes,
                estimated_goal_scores={k: _round(v) for k, v in estimated.items()},
                estimated_composite=_round(
                    composite_score(estimated_mission, structural, config.score_mix)
                ),
                data_needed=suggestion.data_needed,
                verified=False,
            )
        )
    return alternatives


def build_evaluation(
    metadata: ProposalMetadata,
    config: CoopConfig,
    assessment: ProposalAssessment,
    engine_version: str,
) -> Evaluation:
    """Compute the full evaluation payload from an evaluator assessment."""
    merged = merge_metadata(metadata, assessment)
    by_goal = {score.goal_id: score for score in assessment.goal_scores}
    goal_results = [
        GoalScoreResult(
            goal_id=goal.key,
            label=goal.label,
            domain=goal.domain,
            weight=goal.priority_weight,
            score=by_goal[goal.key].score,
            rationale=by_goal[goal.key].rationale,
        )
        for goal in config.mission_goals or []
    ]
    goal_scores = {result.goal_id: result.score for result in goal_results}

    structural_scores = StructuralScores(
        feasibility=assessment.structural_scores.feasibility,
        risk=assessment.structural_scores.risk,
        accountability=assessment.structural_scores.accountability,
    )
    mission = weighted_mission_score(goal_scores, config.mission_goals or [])
    structural = weighted_structural_score(structural_scores, config.structural_weights)
    composite = composite_score(mission, structural, config.score_mix)

    audit_checks = run_audit_checks(merged, config)
    decision, reasons, missing = decide(
        goal_results, structural, composite, config, audit_checks
    )
    audit_checks.extend(
        AuditCheck(name=f"ai_{note.name}", passed=note.passed, note=note.note)
        for note in assessment.audit_notes
    )
    missing.extend(
        MissingDataItem(question=question, severity=MissingDataSeverity.INFO)
        for question in assessment.missing_information
    )

    alternatives: List[Alternative] = []
    best: Optional[Alternative] = None
    if decision != Decision.ADVANCE:
        alternatives = build_alternatives(assessment, goal_scores, structural, config)
        improving = [a for a in alternatives if a.estimated_composite > _round(composite)]
        if improving:
            best = max(improving, key=lambda a: a.estimated_composite)

    return Evaluation(
        engine_version=engine_version,
        config_version=config.version,
        title=merged.title,
        summary=merged.summary,
        category=merged.category,
        budget=merged.budget,
        region=merged.region,
        goal_scores=goal_results,
        structural_scores=structural_scores,
        mission_weighted_score=_round(mission),
        structural_weighted_score=_round(structural),
        composite_score=_round(composite),
        score_mix=config.score_mix,
        structural_weights=config.structural_weights,
        thresholds=EvaluationThresholds(
            screening_pass_threshold=config.screening_pass_threshold,
            strong_goal_threshold=config.strong_goal_threshold,
            mission_min_threshold=config.mission_min_threshold,
            structural_gate=config.structural_gate,
        ),
        decision=decision,
        decision_reasons=reasons,
        missing_data=missing,
        audit_checks=audit_checks,
        alternatives=alternatives,
        best_alternative=best,
    )


def council_gate(
    decision: Decision, budget: Optional[Budget], config: CoopConfig
) -> Tuple[bool, ApprovalTier]:
    """Return (council_required, approval_tier) for an evaluated proposal."""
    if decision != Decision.ADVANCE:
        return False, ApprovalTier.NONE
    amount = budget.amount_requested if budget else 0.0
    if amount >= config.council_vote_threshold_usd:
        return True, ApprovalTier.COUNCIL
    if amount < config.ai_auto_approve_threshold_usd:
        return False, ApprovalTier.AUTO
    return False, ApprovalTier.ADMIN


class ScoringEngine:
    """Runs the AI evaluator with a timeout and retry, then scores its output."""

    def __init__(
        self,
        evaluator: AbstractProposalEvaluator,
        engine_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.evaluator = evaluator
        self.engine_version = engine_version or app_config.scoring.engine_version
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else app_config.scoring.timeout_seconds
        )
        self.max_retries = (
            max_retries if max_retries is not None else app_config.scoring.max_retries
        )

    async def evaluate(
        self, text: str, metadata: ProposalMetadata, config: CoopConfig
    ) -> Evaluation:
        """Evaluate a proposal against a config snapshot.

        Raises:
            UpstreamFailureError: If every attempt fails, times out or returns
                output that does not cover the coop's goals
        """
        assessment = await self._assess(text, metadata, config)
        evaluation = build_evaluation(metadata, config, assessment, self.engine_version)
        logger.info(
            "Scored proposal",
            extra={
                "coop_id": config.coop_id,
                "decision": str(evaluation.decision),
                "composite": evaluation.composite_score,
                "version": config.version,
            },
        )
        return evaluation

    async def _assess(
        self, text: str, metadata: ProposalMetadata, config: CoopConfig
    ) -> ProposalAssessment:
        attempts = self.max_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                assessment = await asyncio.wait_for(
                    self.evaluator.assess_proposal(text, metadata, config),
                    timeout=self.timeout_seconds,
                )
                check_assessment(assessment, config)
                return assessment
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(
                    "Proposal evaluation timed out",
                    extra={"attempt": attempt, "timeout": self.timeout_seconds},
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Proposal evaluation failed: {str(e)}",
                    extra={"attempt": attempt, "error_type": type(e).__name__},
                )

        logger.error(
            "Proposal evaluation failed after all attempts",
            extra={"coop_id": config.coop_id, "attempts": attempts},
        )
        raise UpstreamFailureError(
            "Proposal evaluation is unavailable; nothing was saved",
            {"attempts": attempts, "error": str(last_error) or type(last_error).__name__},
        ) from last_error
