"""Gift card issuance, application, redemption and ledger services."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Final
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from atelier.core.config import get_settings
from atelier.core.errors import (
    NotFound,
    PaymentGatewayError,
    StateConflict,
    ValidationFailed,
)
from atelier.core.settings import get_frontend_url, get_payment_settings
from atelier.integrations import CheckoutSession, StripeClient
from atelier.models import (
    GiftCard,
    GiftCardStatus,
    GiftCardTransaction,
    GiftCardTransactionType,
    User,
)
from atelier.services import client_service, notification_service

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")
_ROUNDING_MODE: Final = ROUND_HALF_UP
_CODE_ALPHABET: Final = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CODE_LENGTH: Final = 8
_MAX_CODE_ATTEMPTS: Final = 10


def _to_money(value: Decimal | float | str | int) -> Decimal:
    return Decimal(value).quantize(_CURRENCY_UNIT, rounding=_ROUNDING_MODE)


def _today() -> date:
    return datetime.now(UTC).date()


@dataclass(slots=True)
class GiftCardApplication:
    """Outcome of applying a card to a total, without touching the balance."""

    gift_card_id: UUID
    code: str
    balance: Decimal
    amount_applied: Decimal
    remaining_to_pay: Decimal
    fully_covered: bool


def generate_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def derive_status(card: GiftCard, *, today: date | None = None) -> GiftCardStatus:
    """Status as implied by expiry date and balance."""

    today = today or _today()
    if card.expiry_date is not None and card.expiry_date < today:
        return GiftCardStatus.EXPIRED
    if _to_money(card.balance) <= Decimal("0"):
        return GiftCardStatus.USED
    return GiftCardStatus.ACTIVE


async def get_by_code(session: AsyncSession, code: str) -> GiftCard | None:
    stmt = select(GiftCard).where(GiftCard.code == normalize_code(code))
    return (await session.execute(stmt)).scalar_one_or_none()


async def _require_usable(session: AsyncSession, code: str) -> GiftCard:
    card = await get_by_code(session, code)
    if card is None:
        raise NotFound("Gift card not found")
    status = derive_status(card)
    if status is GiftCardStatus.EXPIRED:
        raise ValidationFailed("Gift card has expired")
    if card.status is not GiftCardStatus.ACTIVE or status is not GiftCardStatus.ACTIVE:
        raise ValidationFailed("Gift card is not active")
    if card.stripe_checkout_session_id and card.delivered_at is None:
        raise ValidationFailed("Gift card payment is not complete")
    return card


async def apply_gift_card(
    session: AsyncSession, *, code: str, order_total: Decimal
) -> GiftCardApplication:
    """Compute how much of ``order_total`` the card covers. Read-only."""

    total = _to_money(order_total)
    if total <= Decimal("0"):
        raise ValidationFailed("Order total must be positive")
    card = await _require_usable(session, code)
    balance = _to_money(card.balance)
    applied = min(balance, total)
    remaining = total - applied
    return GiftCardApplication(
        gift_card_id=card.id,
        code=card.code,
        balance=balance,
        amount_applied=applied,
        remaining_to_pay=remaining,
        fully_covered=remaining == Decimal("0.00"),
    )


async def try_debit_balance(
    session: AsyncSession, *, gift_card_id: UUID, amount: Decimal
) -> bool:
    """Atomically take ``amount`` from an active card with enough balance."""

    stmt = (
        update(GiftCard)
        .where(
            GiftCard.id == gift_card_id,
            GiftCard.status == GiftCardStatus.ACTIVE,
            GiftCard.balance >= amount,
        )
        .values(balance=GiftCard.balance - amount)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def usage_for_target(
    session: AsyncSession,
    *,
    order_id: UUID | None = None,
    reservation_id: UUID | None = None,
) -> GiftCardTransaction | None:
    if order_id is None and reservation_id is None:
        return None
    stmt = select(GiftCardTransaction).where(
        GiftCardTransaction.transaction_type == GiftCardTransactionType.USAGE
    )
    if order_id is not None:
        stmt = stmt.where(GiftCardTransaction.order_id == order_id)
    else:
        stmt = stmt.where(GiftCardTransaction.reservation_id == reservation_id)
    return (await session.execute(stmt.limit(1))).scalar_one_or_none()


async def redeem_gift_card(
    session: AsyncSession,
    *,
    code: str,
    amount: Decimal,
    order_id: UUID | None = None,
    reservation_id: UUID | None = None,
    note: str | None = None,
) -> GiftCardTransaction:
    """Debit the card and append a usage row.

    Redemption happens at most once per order or reservation; repeated calls
    for the same target return the existing usage row. The caller commits.
    """

    normalized = _to_money(amount)
    if normalized <= Decimal("0"):
        raise ValidationFailed("Redemption amount must be positive")

    existing = await usage_for_target(
        session, order_id=order_id, reservation_id=reservation_id
    )
    if existing is not None:
        logger.info(
            "Gift card usage already recorded for order=%s reservation=%s",
            order_id,
            reservation_id,
        )
        return existing

    card = await _require_usable(session, code)
    if _to_money(card.balance) < normalized:
        raise ValidationFailed("Insufficient gift card balance")

    if not await try_debit_balance(session, gift_card_id=card.id, amount=normalized):
        raise ValidationFailed("Insufficient gift card balance")
    await session.refresh(card)

    if _to_money(card.balance) <= Decimal("0"):
        card.status = GiftCardStatus.USED
        card.used = True

    entry = GiftCardTransaction(
        gift_card_id=card.id,
        amount=-normalized,
        transaction_type=GiftCardTransactionType.USAGE,
        order_id=order_id,
        reservation_id=reservation_id,
        notes=note,
    )
    session.add(entry)
    await session.flush()
    return entry


async def restore_gift_card(
    session: AsyncSession,
    *,
    gift_card_id: UUID,
    amount: Decimal,
    order_id: UUID | None = None,
    reservation_id: UUID | None = None,
    note: str | None = None,
) -> GiftCardTransaction:
    """Credit a card back and reactivate it. The caller commits."""

    normalized = _to_money(amount)
    if normalized <= Decimal("0"):
        raise ValidationFailed("Restored amount must be positive")

    card = await session.get(GiftCard, gift_card_id)
    if card is None:
        raise NotFound("Gift card not found")

    stmt = (
        update(GiftCard)
        .where(
            GiftCard.id == gift_card_id,
            GiftCard.balance + normalized <= GiftCard.amount,
        )
        .values(
            balance=GiftCard.balance + normalized,
            status=GiftCardStatus.ACTIVE,
            used=False,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        raise StateConflict("Restoring this amount would exceed the card value")
    await session.refresh(card)

    entry = GiftCardTransaction(
        gift_card_id=card.id,
        amount=normalized,
        transaction_type=GiftCardTransactionType.REFUND,
        order_id=order_id,
        reservation_id=reservation_id,
        notes=note,
    )
    session.add(entry)
    await session.flush()
    return entry


async def ledger_balance(session: AsyncSession, card: GiftCard) -> Decimal:
    """Balance recomputed from the ledger rather than the cached column."""

    stmt = select(func.coalesce(func.sum(GiftCardTransaction.amount), 0)).where(
        GiftCardTransaction.gift_card_id == card.id,
        GiftCardTransaction.transaction_type != GiftCardTransactionType.PURCHASE,
    )
    movements = (await session.execute(stmt)).scalar_one()
    return _to_money(card.amount) + _to_money(movements or 0)


async def _unique_code(session: AsyncSession) -> str:
    for _ in range(_MAX_CODE_ATTEMPTS):
        code = generate_code()
        if await get_by_code(session, code) is None:
            return code
    raise RuntimeError("Unable to generate a unique gift card code")


async def issue_gift_card(
    session: AsyncSession,
    *,
    amount: Decimal,
    category: str | None = None,
    purchaser: User | None = None,
    purchaser_name: str | None = None,
    purchaser_email: str | None = None,
    recipient_name: str | None = None,
    recipient_email: str | None = None,
    expiry_date: date | None = None,
    code: str | None = None,
    note: str = "Gift card purchase",
) -> GiftCard:
    """Create a card together with its initial purchase ledger row."""

    normalized = _to_money(amount)
    if normalized <= Decimal("0"):
        raise ValidationFailed("Gift card amount must be positive")

    if code is not None:
        code = normalize_code(code)
        if await get_by_code(session, code) is not None:
            raise ValidationFailed("Gift card code already exists")
    else:
        code = await _unique_code(session)

    if expiry_date is None:
        expiry_date = _today() + timedelta(days=get_settings().gift_card_validity_days)

    card = GiftCard(
        code=code,
        amount=normalized,
        balance=normalized,
        status=GiftCardStatus.ACTIVE,
        expiry_date=expiry_date,
        category=category,
        used=False,
        purchaser_id=purchaser.id if purchaser is not None else None,
        purchaser_name=purchaser_name,
        purchaser_email=purchaser_email,
        recipient_name=recipient_name,
        recipient_email=recipient_email,
    )
    session.add(card)
    await session.flush()
    session.add(
        GiftCardTransaction(
            gift_card_id=card.id,
            amount=normalized,
            transaction_type=GiftCardTransactionType.PURCHASE,
            notes=note,
        )
    )
    await session.flush()
    return card


def send_gift_card(
    card: GiftCard, background_tasks: BackgroundTasks | None
) -> bool:
    subject, body = notification_service.build_gift_card_email(card)
    return notification_service.schedule_email(
        background_tasks,
        recipients=[card.recipient_email or card.purchaser_email],
        subject=subject,
        body=body,
    )


async def issue_and_deliver(
    session: AsyncSession,
    *,
    background_tasks: BackgroundTasks | None = None,
    **fields: Any,
) -> GiftCard:
    """Admin issuance: the card is usable at once and mailed to the recipient."""

    card = await issue_gift_card(session, note="Issued by the studio", **fields)
    card.delivered_at = datetime.now(UTC)
    await session.commit()
    send_gift_card(card, background_tasks)
    return card


async def purchase_gift_card(
    session: AsyncSession,
    *,
    amount: Decimal,
    stripe: StripeClient | None,
    category: str | None = None,
    purchaser: User | None = None,
    purchaser_name: str | None = None,
    purchaser_email: str | None = None,
    recipient_name: str | None = None,
    recipient_email: str | None = None,
) -> tuple[GiftCard, CheckoutSession]:
    """Issue a card held until its Stripe checkout is paid."""

    if stripe is None:
        raise ValidationFailed("Stripe payments are not available")
    if purchaser is not None:
        purchaser_email = purchaser_email or purchaser.email
        purchaser_name = purchaser_name or purchaser.full_name
    if not purchaser_email or not client_service.is_valid_email(purchaser_email):
        raise ValidationFailed("A valid purchaser email is required")
    if recipient_email and not client_service.is_valid_email(recipient_email):
        raise ValidationFailed("Invalid recipient email")
    frontend_url = get_frontend_url()

    card = await issue_gift_card(
        session,
        amount=amount,
        category=category,
        purchaser=purchaser,
        purchaser_name=purchaser_name,
        purchaser_email=purchaser_email.strip().lower(),
        recipient_name=recipient_name,
        recipient_email=recipient_email,
    )
    # Marks the card as awaiting payment until the checkout completes.
    card.stripe_checkout_session_id = "pending"
    await session.commit()

    try:
        checkout = await stripe.create_checkout_session(
            amount=card.amount,
            product_name=f"Carte cadeau {_to_money(card.amount)} €",
            success_url=f"{frontend_url}/cartes-cadeaux?purchase=success",
            cancel_url=f"{frontend_url}/cartes-cadeaux?purchase=cancelled",
            currency=get_payment_settings().currency,
            metadata={"type": "gift_card", "gift_card_id": str(card.id)},
            customer_email=card.purchaser_email,
            idempotency_seed=f"gift-card-{card.id}",
        )
    except PaymentGatewayError:
        await session.execute(
            delete(GiftCardTransaction).where(GiftCardTransaction.gift_card_id == card.id)
        )
        await session.execute(delete(GiftCard).where(GiftCard.id == card.id))
        await session.commit()
        raise
    card.stripe_checkout_session_id = checkout.id
    await session.commit()
    return card, checkout


async def check_gift_card(session: AsyncSession, *, code: str) -> GiftCard:
    card = await get_by_code(session, code)
    if card is None:
        raise NotFound("Gift card not found")
    return card


async def list_gift_cards(
    session: AsyncSession,
    *,
    status: GiftCardStatus | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> Sequence[GiftCard]:
    stmt = select(GiftCard).order_by(GiftCard.created_at.desc())
    if status is not None:
        stmt = stmt.where(GiftCard.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                GiftCard.code.ilike(pattern),
                GiftCard.recipient_email.ilike(pattern),
                GiftCard.purchaser_email.ilike(pattern),
                GiftCard.recipient_name.ilike(pattern),
            )
        )
    result = await session.execute(stmt.offset(skip).limit(limit))
    return result.scalars().all()


async def get_gift_card(session: AsyncSession, *, gift_card_id: UUID) -> GiftCard:
    stmt = (
        select(GiftCard)
        .where(GiftCard.id == gift_card_id)
        .options(selectinload(GiftCard.transactions))
    )
    card = (await session.execute(stmt)).scalar_one_or_none()
    if card is None:
        raise NotFound("Gift card not found")
    return card


async def update_gift_card(
    session: AsyncSession,
    *,
    gift_card_id: UUID,
    balance: Decimal | None = None,
    expiry_date: date | None = None,
    recipient_name: str | None = None,
    recipient_email: str | None = None,
    category: str | None = None,
) -> GiftCard:
    """Admin edit; balance changes are written as ledger adjustments."""

    card = await session.get(GiftCard, gift_card_id)
    if card is None:
        raise NotFound("Gift card not found")

    if expiry_date is not None:
        card.expiry_date = expiry_date
    if recipient_name is not None:
        card.recipient_name = recipient_name
    if recipient_email is not None:
        card.recipient_email = recipient_email
    if category is not None:
        card.category = category

    if balance is not None:
        target = _to_money(balance)
        if target < Decimal("0") or target > _to_money(card.amount):
            raise ValidationFailed("Balance must be between 0 and the card amount")
        delta = target - _to_money(card.balance)
        if delta != Decimal("0"):
            card.balance = target
            session.add(
                GiftCardTransaction(
                    gift_card_id=card.id,
                    amount=delta,
                    transaction_type=(
                        GiftCardTransactionType.REFUND
                        if delta > 0
                        else GiftCardTransactionType.USAGE
                    ),
                    notes="Manual balance adjustment",
                )
            )

    card.status = derive_status(card)
    card.used = card.status is GiftCardStatus.USED
    await session.commit()
    return await get_gift_card(session, gift_card_id=gift_card_id)


async def delete_gift_card(session: AsyncSession, *, gift_card_id: UUID) -> None:
    card = await session.get(GiftCard, gift_card_id)
    if card is None:
        raise NotFound("Gift card not found")
    usage = await session.execute(
        select(func.count(GiftCardTransaction.id)).where(
            GiftCardTransaction.gift_card_id == gift_card_id,
            GiftCardTransaction.transaction_type == GiftCardTransactionType.USAGE,
        )
    )
    if usage.scalar_one():
        raise StateConflict("Gift card has been used and cannot be deleted")
    await session.execute(
        delete(GiftCardTransaction).where(
            GiftCardTransaction.gift_card_id == gift_card_id
        )
    )
    await session.execute(delete(GiftCard).where(GiftCard.id == gift_card_id))
    await session.commit()
