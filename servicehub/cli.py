"""CLI for ServiceHub: bootstrap users and the catalog, run scheduled jobs by hand."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

DEFAULT_CATALOG = {
    "Plumbing": ["Leak Repair", "Drain Cleaning", "Water Heater"],
    "Electrical": ["Wiring", "Lighting", "Panel Upgrade"],
    "Cleaning": ["House Cleaning", "Carpet Cleaning"],
    "Landscaping": ["Lawn Care", "Tree Trimming"],
}


async def _prepare():
    """Create tables and detect optional columns before touching data."""
    from servicehub.db.capabilities import detect_capabilities, set_capabilities
    from servicehub.db.engine import engine
    from servicehub.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    set_capabilities(await detect_capabilities(engine))


async def cmd_create_user(args):
    """Create a customer, provider or admin account."""
    from servicehub.db import crud
    from servicehub.db.engine import async_session_factory
    from servicehub.services.auth import hash_password

    await _prepare()

    password = args.password
    if not password:
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match")
            sys.exit(1)

    if len(password) < 8:
        print("Password must be at least 8 characters")
        sys.exit(1)

    async with async_session_factory() as db:
        if await crud.get_user_by_email(db, args.email):
            print(f"User already exists: {args.email}")
            sys.exit(1)
        user = await crud.create_user(
            db,
            email=args.email,
            password_hash=hash_password(password),
            role=args.role,
            display_name=args.display_name or "",
        )
        if user.role == "provider":
            await crud.get_or_create_provider_profile(db, user.id)

    print(f"User created: {user.email} (id={user.id}, role={user.role})")


async def cmd_seed_catalog(args):
    """Insert the default categories and subcategories that are missing."""
    from servicehub.db import crud
    from servicehub.db.engine import async_session_factory

    await _prepare()

    async with async_session_factory() as db:
        existing = {c.name: c for c in await crud.list_categories(db)}
        for name, subs in DEFAULT_CATALOG.items():
            category = existing.get(name)
            if category is None:
                category = await crud.create_category(db, name)
                print(f"  Added category {name} (id={category.id})")
            have = {s.name for s in category.subcategories}
            for sub in subs:
                if sub not in have:
                    await crud.create_subcategory(db, category.id, sub)
                    print(f"    Added subcategory {sub}")

    print("Catalog seeded.")


async def cmd_process_pending_payouts(args):
    """Run the payout sweep once."""
    from servicehub.db.engine import async_session_factory
    from servicehub.services.payouts import process_pending_payouts

    await _prepare()
    async with async_session_factory() as db:
        result = await process_pending_payouts(db)
    print(f"Payouts: {result['completed']} completed, {result['skipped']} skipped, {result['failed']} failed")


async def cmd_assign_fallback_leads(args):
    """Run the fallback lead assignment once."""
    from servicehub.db.engine import async_session_factory
    from servicehub.services.assignment import run_fallback_assignment

    await _prepare()
    async with async_session_factory() as db:
        result = await run_fallback_assignment(db)
    print(f"Processed {result['processed']} leads, assigned {result['assigned']} fallback leads")


def main():
    parser = argparse.ArgumentParser(description="ServiceHub CLI")
    subparsers = parser.add_subparsers(dest="command")

    # create-user
    cu = subparsers.add_parser("create-user", help="Create a user account")
    cu.add_argument("--email", required=True, help="Login email")
    cu.add_argument("--password", default="", help="Password (prompted if not given)")
    cu.add_argument("--role", default="customer", choices=["customer", "provider", "admin"], help="Account role")
    cu.add_argument("--display-name", default="", help="Display name")

    # seed-catalog
    subparsers.add_parser("seed-catalog", help="Insert the default service categories")

    # scheduled jobs
    subparsers.add_parser("process-pending-payouts", help="Pay out providers for closed, paid requests")
    subparsers.add_parser("assign-fallback-leads", help="Offer stale leads to the recorded alternates")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "create-user":
        asyncio.run(cmd_create_user(args))
    elif args.command == "seed-catalog":
        asyncio.run(cmd_seed_catalog(args))
    elif args.command == "process-pending-payouts":
        asyncio.run(cmd_process_pending_payouts(args))
    elif args.command == "assign-fallback-leads":
        asyncio.run(cmd_assign_fallback_leads(args))


if __name__ == "__main__":
    main()
