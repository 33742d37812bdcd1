#!/usr/bin/env python3
"""
Seed version 1 of a coop's config with the default policy.

Usage:
    python scripts/seed_coop_config.py --coop-id soulaan --admin-wallet 0xabc...
    python scripts/seed_coop_config.py --coop-id soulaan --admin-wallet 0xabc... --overrides policy.json
"""

import argparse
import asyncio
import json
import os
import sys

# Add the parent directory (root) to the path to import from coopgov
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from coopgov.backend.factory import get_backend
from coopgov.backend.models import Caller, CoopConfigBase
from coopgov.config import config
from coopgov.lib.errors import GovernanceError
from coopgov.lib.logger import configure_logger
from coopgov.services.config_store import ConfigStore

# Configure logger
logger = configure_logger(__name__)


async def seed(coop_id: str, admin_wallet: str, overrides_path: str = None) -> int:
    overrides = {}
    if overrides_path:
        with open(overrides_path, "r") as f:
            overrides = json.load(f)

    store = ConfigStore(get_backend())
    existing = store.get_active(coop_id)
    if existing is not None:
        print(f"Coop {coop_id} already has active config version {existing.version}")
        return 0

    try:
        created = await store.create(
            coop_id,
            CoopConfigBase(**overrides),
            Caller(wallet_address=admin_wallet, is_admin=True),
        )
    except GovernanceError as e:
        logger.error(f"Failed to seed config: {e.message}", extra=e.details)
        return 1

    print(f"Created config version {created.version} for coop {coop_id}")
    print(json.dumps(created.policy_snapshot(), indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Seed a coop's first config version with the default policy"
    )
    parser.add_argument(
        "--coop-id",
        default=config.governance.default_coop_id,
        help="Coop to seed (default: configured default coop)",
    )
    parser.add_argument(
        "--admin-wallet",
        required=True,
        help="Wallet recorded as the config's creator",
    )
    parser.add_argument(
        "--overrides",
        help="Path to a JSON file with policy fields that replace the defaults",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(seed(args.coop_id, args.admin_wallet, args.overrides)))


if __name__ == "__main__":
    main()
