#!/usr/bin/env python3
"""
CloakSwap Eligibility CLI
=========================

[DEMO] Drives the gated-swap eligibility backend from the command line:
- Issue / register / revoke encrypted eligibility profiles
- Configure per-pool rule masks
- Run the compliance hook and inspect its audit trail
- Simulate hook-gated swaps against demo balances

[MODE] CLOAKSWAP_MODE=demo (default) runs everything on a local SQLite
store. CLOAKSWAP_MODE=production talks to the deployed contracts; swaps and
balances are then unavailable.

Usage:
    python main.py seed
    python main.py check 0x1111111111111111111111111111111111111111
    python main.py swap 0x1111111111111111111111111111111111111111 USDC gGOLD 100

Examples:
    # Self-register an accredited EU investor with the 1000 bucket
    python main.py register 0xabc... --accredited --region EU --bucket 1000

    # Require accredited + EU + bucket 1000 on the demo pool
    python main.py set-rule 0x803

    # Last hook decisions for a wallet
    python main.py audit 0xabc...
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import asdict
from typing import Any, Dict, Optional

# Load environment variables from .env before config reads them
from dotenv import load_dotenv
load_dotenv()

from config import config, get_current_network
from core.storage import StorageError
from compliance.backend import EligibilityBackend, create_backend
from compliance.bitmap import (
    Bucket,
    Region,
    build_bitmap,
    default_rule_mask,
    describe_bitmap,
    parse_mask,
)
from compliance.errors import ComplianceError
from compliance.fhe import encrypt_bitmap
from compliance.preferences import PREFERENCE_KEYS

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cloakswap")

DAY = 24 * 60 * 60

# Demo wallets
USER_A = "0x1111111111111111111111111111111111111111"
USER_B = "0x2222222222222222222222222222222222222222"

STARTER_BALANCES = {"USDC": 1000.0, "ETH": 1.0}


def _expiry(days: float, now: Optional[int] = None) -> int:
    now = int(time.time()) if now is None else now
    return now + int(days * DAY)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def seed_demo(
    backend: EligibilityBackend,
    pool_id: Optional[str] = None,
    expiry_days: Optional[int] = None,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Populate the demo scenario.

    - User A: accredited, EU, bucket 1000 -> eligible
    - User B: not accredited, US, bucket 100 -> NOT_ELIGIBLE
    - Pool rule: accredited + EU + bucket 1000
    - Starter USDC/ETH for both users (simulated backend only)

    Issuing overwrites, so seeding twice leaves the same profiles.
    """
    pool_id = pool_id or config.compliance.default_pool_id
    expiry_days = config.compliance.default_expiry_days if expiry_days is None else expiry_days
    expiry = _expiry(expiry_days, now)

    bitmap_a = build_bitmap(True, Region.EU, Bucket.B1K)
    bitmap_b = build_bitmap(False, Region.US, Bucket.B100)
    rule = default_rule_mask()

    summary: Dict[str, Any] = {"pool_id": pool_id, "rule_mask": hex(rule), "receipts": {}}
    summary["receipts"]["user_a"] = await backend.issue_profile(USER_A, encrypt_bitmap(bitmap_a), expiry)
    summary["receipts"]["user_b"] = await backend.issue_profile(USER_B, encrypt_bitmap(bitmap_b), expiry)
    summary["receipts"]["pool_rule"] = await backend.set_pool_rule(pool_id, rule)

    if backend.name == "simulated":
        for user in (USER_A, USER_B):
            for token, amount in STARTER_BALANCES.items():
                await backend.credit(user, token, amount)

    logger.info(f"[SEED] Demo users {USER_A[:10]}... (eligible), {USER_B[:10]}... (ineligible)")
    return summary


# ============================================================================
# Command handlers
# ============================================================================

def _profile_ciphertext(args) -> str:
    bitmap = build_bitmap(args.accredited, Region(args.region), Bucket(args.bucket))
    logger.debug(f"[CLI] Bitmap {bin(bitmap)}: {describe_bitmap(bitmap)}")
    return encrypt_bitmap(bitmap)


async def run_command(backend: EligibilityBackend, args) -> Any:
    """Execute one CLI command and return a JSON-serializable result."""
    cmd = args.command
    pool_id = getattr(args, "pool", None) or config.compliance.default_pool_id

    if cmd == "seed":
        return await seed_demo(backend, pool_id=pool_id, expiry_days=args.expiry_days)

    if cmd == "register":
        return {"receipt": await backend.register_profile(
            args.identity, _profile_ciphertext(args), _expiry(args.expiry_days))}

    if cmd == "update":
        return {"receipt": await backend.update_profile(
            args.identity, _profile_ciphertext(args), _expiry(args.expiry_days))}

    if cmd == "issue":
        return {"receipt": await backend.issue_profile(
            args.identity, _profile_ciphertext(args), _expiry(args.expiry_days))}

    if cmd == "revoke":
        return {"receipt": await backend.revoke_profile(args.identity)}

    if cmd == "profile":
        profile = await backend.get_profile(args.identity)
        exists, valid = await backend.is_profile_valid(args.identity)
        return {
            "exists": exists,
            "valid": valid,
            "profile": profile.to_dict() if profile else None,
        }

    if cmd == "set-rule":
        mask = parse_mask(args.mask) if args.mask else default_rule_mask()
        return {"pool_id": pool_id, "mask": hex(mask), "receipt": await backend.set_pool_rule(pool_id, mask)}

    if cmd == "get-rule":
        mask = await backend.get_pool_rule(pool_id)
        return {"pool_id": pool_id, "mask": hex(mask), "requires": describe_bitmap(mask)}

    if cmd == "check":
        result = await backend.check(args.identity, pool_id)
        return {
            "allowed": result.allowed,
            "reason": result.reason.name,
            "message": result.reason.message,
            "receipt": result.receipt_id,
        }

    if cmd == "swap":
        receipt = await backend.simulate_swap(args.identity, pool_id, args.from_token, args.to_token, args.amount)
        return asdict(receipt)

    if cmd == "audit":
        return [entry.as_row() for entry in await backend.get_audit(args.identity)]

    if cmd == "balances":
        return await backend.get_balances(args.identity)

    if cmd == "faucet":
        return {args.token: await backend.credit(args.identity, args.token, args.amount)}

    if cmd == "pref-get":
        if args.key:
            return {args.key: await backend.preferences.get_text(args.name, args.key)}
        return await backend.preferences.get_all(args.name)

    if cmd == "pref-set":
        return {"receipt": await backend.preferences.set_text(args.name, args.key, args.value)}

    if cmd == "reset":
        await backend.reset()
        return {"reset": True}

    raise ValueError(f"Unknown command: {cmd}")


# ============================================================================
# Argument parsing
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CloakSwap gated swap eligibility (demo backend)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py check 0x1111111111111111111111111111111111111111
  python main.py swap 0x1111111111111111111111111111111111111111 USDC gGOLD 100
  python main.py set-rule 0x803 --pool 0x%s
""" % ("11" * 32),
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help=f"SQLite database path (default: {config.storage.database_path})",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    def with_pool(p):
        p.add_argument(
            "--pool",
            type=str,
            default=None,
            help="Pool id, bytes32 hex (default: demo pool)",
        )
        return p

    def with_profile(p):
        p.add_argument("identity", help="Wallet address")
        p.add_argument("--accredited", action="store_true", help="Accredited investor")
        p.add_argument("--region", choices=[r.value for r in Region], default=Region.EU.value)
        p.add_argument("--bucket", choices=[b.value for b in Bucket], default=Bucket.B1K.value)
        p.add_argument(
            "--expiry-days",
            type=float,
            default=config.compliance.default_expiry_days,
            help=f"Credential lifetime in days (default: {config.compliance.default_expiry_days})",
        )
        return p

    seed = with_pool(sub.add_parser("seed", help="Seed demo users, pool rule and balances"))
    seed.add_argument("--expiry-days", type=int, default=None)

    with_profile(sub.add_parser("register", help="Self-register a profile"))
    with_profile(sub.add_parser("update", help="Update an existing profile"))
    with_profile(sub.add_parser("issue", help="Issue a profile (issuer path)"))

    sub.add_parser("revoke", help="Revoke a profile").add_argument("identity")
    sub.add_parser("profile", help="Show stored profile").add_argument("identity")

    set_rule = with_pool(sub.add_parser("set-rule", help="Set pool rule mask"))
    set_rule.add_argument("mask", nargs="?", default=None, help="Decimal or 0x hex (default: 0x803)")
    with_pool(sub.add_parser("get-rule", help="Show pool rule mask"))

    with_pool(sub.add_parser("check", help="Run the compliance hook")).add_argument("identity")

    swap = with_pool(sub.add_parser("swap", help="Simulate a gated swap"))
    swap.add_argument("identity")
    swap.add_argument("from_token")
    swap.add_argument("to_token")
    swap.add_argument("amount", type=float)

    sub.add_parser("audit", help="Show hook audit trail").add_argument("identity")
    sub.add_parser("balances", help="Show demo balances").add_argument("identity")

    faucet = sub.add_parser("faucet", help="Credit demo tokens")
    faucet.add_argument("identity")
    faucet.add_argument("token")
    faucet.add_argument("amount", type=float)

    pref_get = sub.add_parser("pref-get", help="Read preference records")
    pref_get.add_argument("name")
    pref_get.add_argument("key", nargs="?", default=None)

    pref_set = sub.add_parser("pref-set", help="Write a preference record")
    pref_set.add_argument("name")
    pref_set.add_argument("key", help=f"e.g. {PREFERENCE_KEYS['DEFAULT_ASSET']}")
    pref_set.add_argument("value")

    sub.add_parser("reset", help="Wipe local state")
    return parser


async def main(argv=None) -> int:
    """
    Entry point.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.db:
        config.storage.database_path = args.db

    if config.chain.mode == "production":
        _net = get_current_network()
        logger.info(f"[INFO] Starting in NETWORK: {_net['name']} ({_net['chain_id']})")

    backend = await create_backend(config)
    try:
        result = await run_command(backend, args)
        _print(result)
        return 0
    except ComplianceError as e:
        logger.error(f"[CLI] {e}")
        return 1
    except ValueError as e:
        logger.error(f"[CLI] Invalid input: {e}")
        return 2
    except StorageError as e:
        logger.error(f"[CLI] Storage unavailable: {e}")
        return 3
    finally:
        await backend.close()


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
