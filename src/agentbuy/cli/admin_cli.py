"""
Administrative command-line tool for AgentBuy.

Every command opens its own MongoDB connection, prints a human-readable report and exits
with status 0 on success or 1 on any failure.

Usage:
    agentbuy-admin approve-agent [email]
    agentbuy-admin set-admin [email]
    agentbuy-admin set-agent <email>
    agentbuy-admin check-agents
    agentbuy-admin seed-cargos
    agentbuy-admin fix-negative-points
    agentbuy-admin reconcile-cards [--fix]
"""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from agentbuy.config import settings
from agentbuy.database import DatabaseManager
from agentbuy.errors import AgentBuyError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.models.user_models import UserRole
from agentbuy.services.admin_service import AdminService
from agentbuy.services.card_service import CardService
from agentbuy.services.content_service import ContentService

logger = get_logger(prefix="[AdminCLI]")

Command = Callable[[argparse.Namespace, DatabaseManager], Awaitable[None]]


async def approve_agent(args: argparse.Namespace, db: DatabaseManager):
    agent = await AdminService(db).approve_agent_by_email(args.email)
    print(f"✅ Agent {agent['email']} is now approved!")
    print(f"User ID: {agent['_id']}")
    print(f"Role: {agent['role']}")
    print(f"Is Approved: {agent['is_approved']}")
    print(f"Approved At: {agent['approved_at']}")


async def set_admin(args: argparse.Namespace, db: DatabaseManager):
    user = await AdminService(db).set_role(args.email, UserRole.ADMIN.value)
    print(f"✅ User {user['email']} is now an admin!")


async def set_agent(args: argparse.Namespace, db: DatabaseManager):
    user = await AdminService(db).set_role(args.email, UserRole.AGENT.value)
    print(f"✅ User {user['email']} is now an agent (approved: {user.get('is_approved', False)})")
    if not user.get("is_approved"):
        print(f"Run `agentbuy-admin approve-agent {user['email']}` to approve.")


async def check_agents(args: argparse.Namespace, db: DatabaseManager):
    grouped = await AdminService(db).list_users_and_agents()
    total = sum(len(accounts) for accounts in grouped.values())
    print(f"Total users in database: {total}")
    for role, accounts in grouped.items():
        print(f"\n{role} ({len(accounts)}):")
        for account in accounts:
            print(
                f"- Email: {account['email']}, isApproved: {account['is_approved']}, "
                f"Profile: {'Yes' if account['has_profile'] else 'No'}"
            )

    if not grouped.get(UserRole.AGENT.value):
        print("\nNo agents found in database!")
        print("To create an agent, use: agentbuy-admin set-agent <email>")


async def seed_cargos(args: argparse.Namespace, db: DatabaseManager):
    names = await ContentService(db).seed_cargos()
    for name in names:
        print(f"Created/Updated cargo: {name}")
    print(f"✅ Seeded {len(names)} cargos")


async def fix_negative_points(args: argparse.Namespace, db: DatabaseManager):
    fixed = await AdminService(db).fix_negative_points()
    if fixed:
        print(f"✅ Reset negative agent points on {fixed} accounts")
    else:
        print("No accounts with negative agent points")


async def reconcile_cards(args: argparse.Namespace, db: DatabaseManager):
    report = await CardService(db).reconcile_balances(fix=args.fix)
    print(f"Checked {report.users_checked} accounts, {len(report.drifts)} with balance drift")
    for drift in report.drifts:
        print(
            f"- {drift.email or drift.user_id}: cached {drift.cached_balance}, "
            f"ledger {drift.ledger_balance} ({drift.difference:+d})"
        )
    if args.fix:
        print(f"✅ Fixed {report.fixed} balances")
    elif report.drifts:
        print("Run again with --fix to overwrite cached balances with the ledger values.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentbuy-admin",
        description="AgentBuy administrative commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    approve_parser = subparsers.add_parser("approve-agent", help="Promote to agent and approve")
    approve_parser.add_argument("email", nargs="?", default=settings.DEFAULT_AGENT_EMAIL)
    approve_parser.set_defaults(handler=approve_agent)

    admin_parser = subparsers.add_parser("set-admin", help="Give an account the admin role")
    admin_parser.add_argument("email", nargs="?", default=settings.DEFAULT_ADMIN_EMAIL)
    admin_parser.set_defaults(handler=set_admin)

    agent_parser = subparsers.add_parser("set-agent", help="Give an account the agent role")
    agent_parser.add_argument("email")
    agent_parser.set_defaults(handler=set_agent)

    subparsers.add_parser("check-agents", help="List accounts grouped by role").set_defaults(handler=check_agents)
    subparsers.add_parser("seed-cargos", help="Create the default cargo categories").set_defaults(
        handler=seed_cargos
    )
    subparsers.add_parser("fix-negative-points", help="Reset negative agent points to zero").set_defaults(
        handler=fix_negative_points
    )

    reconcile_parser = subparsers.add_parser("reconcile-cards", help="Compare card balances with the ledger")
    reconcile_parser.add_argument("--fix", action="store_true", help="Overwrite drifted balances")
    reconcile_parser.set_defaults(handler=reconcile_cards)

    return parser


async def run_command(handler: Command, args: argparse.Namespace, db: Optional[DatabaseManager] = None) -> int:
    db = db or DatabaseManager()
    try:
        await db.connect()
        await handler(args, db)
        return 0
    except (AgentBuyError, PyMongoError, PydanticValidationError, ConnectionError) as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"❌ {e}", file=sys.stderr)
        return 1
    finally:
        await db.disconnect()


def run(argv: Optional[List[str]] = None, db: Optional[DatabaseManager] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    return asyncio.run(run_command(args.handler, args, db))


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
