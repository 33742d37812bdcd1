#!/usr/bin/env python3
"""
Score a proposal text against a coop's active config without storing anything.

Usage:
    python scripts/preview_evaluation.py --file proposal.txt
    python scripts/preview_evaluation.py --text "Fund a solar co-op ..." --coop-id soulaan --save-output
"""

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime

# Add the parent directory (root) to the path to import from coopgov
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from coopgov.backend.factory import get_backend
from coopgov.backend.models import ProposalMetadata
from coopgov.config import config
from coopgov.lib.errors import GovernanceError
from coopgov.lib.logger import configure_logger
from coopgov.services.ai.evaluator import LLMProposalEvaluator
from coopgov.services.ai.scoring import ScoringEngine, council_gate
from coopgov.services.config_store import ConfigStore

# Configure logger
logger = configure_logger(__name__)


async def preview(args: argparse.Namespace) -> int:
    if args.file:
        with open(args.file, "r") as f:
            text = f.read()
    else:
        text = args.text

    try:
        active = ConfigStore(get_backend()).require_active(args.coop_id)
        engine = ScoringEngine(LLMProposalEvaluator(model=args.model))
        evaluation = await engine.evaluate(text, ProposalMetadata(), active)
    except GovernanceError as e:
        logger.error(f"Preview failed: {e.message}", extra=e.details)
        return 1

    council_required, tier = council_gate(evaluation.decision, evaluation.budget, active)
    result = {
        "evaluation": evaluation.model_dump(mode="json"),
        "council_required": council_required,
        "approval_tier": str(tier),
    }

    print(f"Decision: {evaluation.decision} (composite {evaluation.composite_score:.2f})")
    for reason in evaluation.decision_reasons:
        print(f"  - {reason}")
    print(f"Approval tier: {tier}")

    if args.save_output:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = f"evaluation_preview_{timestamp}.json"
        with open(path, "w") as f:
            json.dump(result, f, indent=2)
        print(f"Saved evaluation to {path}")
    else:
        print(json.dumps(result, indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Preview a proposal evaluation without storing it"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Proposal text")
    source.add_argument("--file", help="Path to a file holding the proposal text")
    parser.add_argument(
        "--coop-id",
        default=config.governance.default_coop_id,
        help="Coop whose active config is used",
    )
    parser.add_argument("--model", help="Override the evaluation model")
    parser.add_argument(
        "--save-output", action="store_true", help="Write the result to a JSON file"
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(preview(args)))


if __name__ == "__main__":
    main()
