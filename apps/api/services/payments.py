"""Stripe hosted checkout and webhook finalisation for credit purchases."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

import stripe
from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.transaction import Transaction
from models.user import User
from services.ledger import TRANSACTION_PURCHASE, credit_credits
from services.pricing import CREDIT_PACKAGES

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"


def _require_stripe() -> str:
    secret_key = settings.STRIPE_SECRET_KEY.strip()
    if not secret_key:
        raise HTTPException(status_code=503, detail="Payments are not configured.")
    return secret_key


def _app_base_url() -> str:
    base_url = settings.PUBLIC_BASE_URL.strip().rstrip("/")
    if not base_url.lower().startswith(("http://", "https://")):
        logger.error("PUBLIC_BASE_URL is invalid for checkout redirects: %r", base_url)
        raise HTTPException(status_code=500, detail="Internal server error")
    return base_url


async def create_checkout(user: User, package_index: int, db: AsyncSession) -> Dict[str, Any]:
    """Record a pending purchase and open a hosted checkout session for it."""
    if package_index < 0 or package_index >= len(CREDIT_PACKAGES):
        raise HTTPException(status_code=400, detail="Invalid package selection")
    secret_key = _require_stripe()
    base_url = _app_base_url()
    package = CREDIT_PACKAGES[package_index]
    user_id = user.id

    transaction = Transaction(
        user_id=user_id,
        amount=Decimal(package["amount_cents"]) / 100,
        credits_purchased=package["credits"],
        status="pending",
    )
    db.add(transaction)
    await db.flush()

    try:
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=secret_key,
            payment_method_types=["card"],
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": settings.STRIPE_CURRENCY,
                        "product_data": {
                            "name": f"{package['credits']} Credits",
                            "description": f"Purchase {package['credits']} credits for video generation",
                        },
                        "unit_amount": package["amount_cents"],
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{base_url}/dashboard?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/dashboard?canceled=true",
            metadata={
                "user_id": user_id,
                "transaction_id": transaction.id,
                "credits": str(package["credits"]),
            },
        )
    except stripe.StripeError as exc:
        await db.rollback()
        logger.warning("Stripe checkout creation failed for user %s: %s", user_id, exc)
        raise HTTPException(
            status_code=400,
            detail=getattr(exc, "user_message", None) or "Could not start checkout. Please try again.",
        ) from exc

    transaction.stripe_session_id = session["id"]
    await db.commit()
    logger.info("checkout_created user=%s transaction=%s credits=%s", user_id, transaction.id, package["credits"])
    return {"url": session["url"], "transaction_id": transaction.id}


def verify_webhook_event(body: bytes, signature: str) -> Any:
    """Validate the provider signature and return the parsed event."""
    if not signature:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Payments are not configured.")
    try:
        return stripe.Webhook.construct_event(
            payload=body,
            sig_header=signature,
            secret=settings.STRIPE_WEBHOOK_SECRET,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=400, detail="Signature verification failed") from exc


async def complete_checkout_session(session_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Finalise a paid session once; replays and unknown sessions are acknowledged."""
    result = await db.execute(select(Transaction).where(Transaction.stripe_session_id == session_id))
    transaction = result.scalar_one_or_none()
    if not transaction:
        logger.error("Transaction not found for checkout session %s", session_id)
        return {"received": True, "credited": 0}

    claimed = await db.execute(
        update(Transaction)
        .where(Transaction.id == transaction.id, Transaction.status == "pending")
        .values(status="completed", completed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        return {"received": True, "credited": 0}

    await credit_credits(
        transaction.user_id,
        db,
        amount=transaction.credits_purchased,
        reason=f"Purchased {transaction.credits_purchased} credits",
        transaction_type=TRANSACTION_PURCHASE,
        reference_id=transaction.id,
        commit=False,
    )
    await db.commit()
    logger.info("Credits added for user %s (transaction %s)", transaction.user_id, transaction.id)
    return {"received": True, "credited": transaction.credits_purchased}


async def handle_webhook_event(event: Any, db: AsyncSession) -> Dict[str, Any]:
    if event["type"] != CHECKOUT_COMPLETED_EVENT:
        return {"received": True}
    return await complete_checkout_session(event["data"]["object"]["id"], db)
