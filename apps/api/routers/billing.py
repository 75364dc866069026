"""Billing and credits router."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.ledger import get_ledger_summary
from services.payments import create_checkout, handle_webhook_event, verify_webhook_event

router = APIRouter()
logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_index: int = Field(alias="packageIndex")


@router.get("/credits")
async def credits_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_ledger_summary(user.id, db)


@router.post("/checkout")
async def create_checkout_session(
    request: CheckoutRequest,
    _rate_limit: None = Depends(rate_limit("billing_checkout", limit=20, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Start a hosted checkout; the client redirects to the returned URL."""
    return await create_checkout(user, request.package_index, db)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Signature-verified provider webhook; finalises purchases idempotently."""
    body = await request.body()
    event = verify_webhook_event(body, request.headers.get("stripe-signature", ""))
    return await handle_webhook_event(event, db)
