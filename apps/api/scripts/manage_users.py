"""Operator CLI for user accounts and manual credit adjustments.

    python scripts/manage_users.py list
    python scripts/manage_users.py create alice alice@example.com s3cret --credits 10
    python scripts/manage_users.py add-credits alice 25 --reason "Support goodwill"
    python scripts/manage_users.py reset-password alice n3w-s3cret
"""

import argparse
import asyncio
import os
import sys
import uuid

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select

from database import async_session_maker
from models.user import AUTH_TYPE_PASSWORD, User
from services.ledger import TRANSACTION_ADJUSTMENT, credit_credits, reconcile_balance
from services.passwords import hash_password


async def _find_user(session, identifier: str):
    for criterion in (User.id == identifier, User.username == identifier, User.email == identifier.lower()):
        result = await session.execute(select(User).where(criterion))
        user = result.scalar_one_or_none()
        if user:
            return user
    return None


async def list_users() -> int:
    async with async_session_maker() as session:
        result = await session.execute(select(User).order_by(User.created_at))
        users = result.scalars().all()
        for user in users:
            balance, history_sum = await reconcile_balance(user.id, session)
            drift = "" if balance == history_sum else f"  (history sums to {history_sum})"
            print(f"{user.username:<24} {user.email:<40} {user.auth_type:<9} {balance:>6}{drift}")
        print(f"{len(users)} user(s)")
    return 0


async def create_user(username: str, email: str, password: str, credits: int) -> int:
    if "@" in username:
        print("❌ Username cannot contain \"@\"")
        return 1
    async with async_session_maker() as session:
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            credits_balance=0,
            auth_type=AUTH_TYPE_PASSWORD,
        )
        session.add(user)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            print(f"❌ Username or email already exists: {username} / {email}")
            return 1
        if credits > 0:
            await credit_credits(
                user.id,
                session,
                amount=credits,
                reason=f"Initial grant of {credits} credits",
                transaction_type=TRANSACTION_ADJUSTMENT,
                reference_id=f"initial:{user.id}",
            )
        print(f"✅ Created {username} ({user.id}) with {credits} credits")
    return 0


async def add_credits(identifier: str, amount: int, reason: str) -> int:
    if amount <= 0:
        print("❌ Amount must be positive")
        return 1
    async with async_session_maker() as session:
        user = await _find_user(session, identifier)
        if not user:
            print(f"❌ User not found: {identifier}")
            return 1
        balance = await credit_credits(
            user.id,
            session,
            amount=amount,
            reason=reason,
            transaction_type=TRANSACTION_ADJUSTMENT,
            reference_id=f"manual:{uuid.uuid4()}",
        )
        print(f"✅ {user.username} now has {balance} credits")
    return 0


async def reset_password(identifier: str, password: str) -> int:
    async with async_session_maker() as session:
        user = await _find_user(session, identifier)
        if not user:
            print(f"❌ User not found: {identifier}")
            return 1
        if user.auth_type != AUTH_TYPE_PASSWORD:
            print(f"❌ {user.username} is an embedded account and has no password login")
            return 1
        user.password_hash = hash_password(password)
        await session.commit()
        print(f"✅ Password reset for {user.username}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage Reel Credits users")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List users with balances")

    create = commands.add_parser("create", help="Create a password user")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("password")
    create.add_argument("--credits", type=int, default=0)

    grant = commands.add_parser("add-credits", help="Grant credits as a ledger adjustment")
    grant.add_argument("user", help="username, email or id")
    grant.add_argument("amount", type=int)
    grant.add_argument("--reason", default="Manual credit adjustment")

    reset = commands.add_parser("reset-password", help="Set a new password")
    reset.add_argument("user", help="username, email or id")
    reset.add_argument("password")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "list":
        return asyncio.run(list_users())
    if args.command == "create":
        return asyncio.run(create_user(args.username, args.email, args.password, args.credits))
    if args.command == "add-credits":
        return asyncio.run(add_credits(args.user, args.amount, args.reason))
    return asyncio.run(reset_password(args.user, args.password))


if __name__ == "__main__":
    sys.exit(main())
