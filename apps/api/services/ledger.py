"""Credit ledger: balance mutations paired with append-only history rows."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_history import CreditHistory
from models.user import User
from services.pricing import CREDIT_PACKAGES, price_list


TRANSACTION_PURCHASE = "purchase"
TRANSACTION_USAGE = "usage"
TRANSACTION_REFUND = "refund"
TRANSACTION_ADJUSTMENT = "adjustment"


async def get_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.credits_balance).where(User.id == user_id))
    return int(result.scalar() or 0)


async def _history_exists(
    db: AsyncSession,
    *,
    transaction_type: str,
    reference_id: Optional[str],
) -> bool:
    if not reference_id:
        return False
    result = await db.execute(
        select(CreditHistory.id).where(
            CreditHistory.transaction_type == transaction_type,
            CreditHistory.reference_id == reference_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def _append_history(
    db: AsyncSession,
    *,
    user_id: str,
    amount: int,
    transaction_type: str,
    description: str,
    reference_id: Optional[str],
) -> CreditHistory:
    entry = CreditHistory(
        user_id=user_id,
        amount=int(amount),
        transaction_type=transaction_type,
        description=description,
        reference_id=reference_id,
        balance_after=await get_balance(user_id, db),
    )
    db.add(entry)
    await db.flush()
    return entry


async def debit_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    transaction_type: str = TRANSACTION_USAGE,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> Optional[int]:
    """Atomically charge ``amount`` credits.

    Returns the new balance, or None when the balance is insufficient (nothing
    is written in that case). With ``commit=False`` the caller owns the
    transaction, so the debit lands together with whatever else it writes.
    """
    charge = max(int(amount), 0)
    if charge == 0:
        return await get_balance(user_id, db)

    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credits_balance >= charge)
        .values(credits_balance=User.credits_balance - charge)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None

    entry = await _append_history(
        db,
        user_id=user_id,
        amount=-charge,
        transaction_type=transaction_type,
        description=reason,
        reference_id=reference_id,
    )
    if commit:
        await db.commit()
    return int(entry.balance_after)


async def credit_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    transaction_type: str,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Add credits and record them. Re-applying the same (type, reference) is a no-op."""
    grant = max(int(amount), 0)
    if grant == 0 or await _history_exists(db, transaction_type=transaction_type, reference_id=reference_id):
        return await get_balance(user_id, db)

    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits_balance=User.credits_balance + grant)
        .execution_options(synchronize_session=False)
    )
    entry = await _append_history(
        db,
        user_id=user_id,
        amount=grant,
        transaction_type=transaction_type,
        description=reason,
        reference_id=reference_id,
    )
    if commit:
        await db.commit()
    return int(entry.balance_after)


async def reconcile_balance(user_id: str, db: AsyncSession) -> Tuple[int, int]:
    """Return (stored balance, sum of history amounts) for drift checks."""
    history_sum = await db.execute(
        select(func.coalesce(func.sum(CreditHistory.amount), 0)).where(CreditHistory.user_id == user_id)
    )
    return await get_balance(user_id, db), int(history_sum.scalar() or 0)


async def get_ledger_summary(user_id: str, db: AsyncSession, limit: int = 50) -> Dict[str, Any]:
    result = await db.execute(
        select(CreditHistory)
        .where(CreditHistory.user_id == user_id)
        .order_by(CreditHistory.created_at.desc())
        .limit(limit)
    )
    entries = result.scalars().all()
    return {
        "balance": await get_balance(user_id, db),
        "costs": price_list(),
        "packages": [
            {"index": index, "credits": package["credits"], "amount": package["amount_cents"] / 100}
            for index, package in enumerate(CREDIT_PACKAGES)
        ],
        "history": [
            {
                "id": entry.id,
                "amount": entry.amount,
                "transaction_type": entry.transaction_type,
                "description": entry.description,
                "balance_after": entry.balance_after,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }
