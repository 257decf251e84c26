"""Unit tests for gift card application, redemption and the ledger."""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from atelier.core.errors import NotFound, StateConflict, ValidationFailed
from atelier.models import GiftCard, GiftCardStatus, GiftCardTransaction, GiftCardTransactionType
from atelier.services import gift_card_service

pytestmark = pytest.mark.asyncio


async def _issue(session, amount: str = "50.00", **fields) -> GiftCard:
    card = await gift_card_service.issue_gift_card(
        session, amount=Decimal(amount), purchaser_email="marie@example.com", **fields
    )
    await session.commit()
    return card


async def test_issue_writes_purchase_row_and_default_expiry(db_session) -> None:
    card = await _issue(db_session)

    assert len(card.code) == 8
    assert card.balance == Decimal("50.00")
    assert card.status is GiftCardStatus.ACTIVE
    assert card.expiry_date == datetime.now(UTC).date() + timedelta(days=365)

    rows = (
        await db_session.execute(
            select(GiftCardTransaction).where(GiftCardTransaction.gift_card_id == card.id)
        )
    ).scalars().all()
    assert [row.transaction_type for row in rows] == [GiftCardTransactionType.PURCHASE]
    assert rows[0].amount == Decimal("50.00")


async def test_issue_normalizes_and_rejects_duplicate_codes(db_session) -> None:
    card = await _issue(db_session, code=" noel2024 ")
    assert card.code == "NOEL2024"

    with pytest.raises(ValidationFailed):
        await gift_card_service.issue_gift_card(
            db_session, amount=Decimal("10"), code="Noel2024"
        )


async def test_issue_rejects_non_positive_amount(db_session) -> None:
    with pytest.raises(ValidationFailed):
        await gift_card_service.issue_gift_card(db_session, amount=Decimal("0"))


async def test_apply_partial_and_full_cover(db_session) -> None:
    card = await _issue(db_session, amount="30.00")

    partial = await gift_card_service.apply_gift_card(
        db_session, code=card.code.lower(), order_total=Decimal("45.00")
    )
    assert partial.amount_applied == Decimal("30.00")
    assert partial.remaining_to_pay == Decimal("15.00")
    assert partial.fully_covered is False

    full = await gift_card_service.apply_gift_card(
        db_session, code=card.code, order_total=Decimal("12.50")
    )
    assert full.amount_applied == Decimal("12.50")
    assert full.remaining_to_pay == Decimal("0.00")
    assert full.fully_covered is True

    await db_session.refresh(card)
    assert card.balance == Decimal("30.00")


async def test_apply_rejects_unknown_expired_and_unpaid_cards(db_session) -> None:
    with pytest.raises(NotFound):
        await gift_card_service.apply_gift_card(
            db_session, code="NOPE0000", order_total=Decimal("10")
        )

    expired = await _issue(db_session, expiry_date=date.today() - timedelta(days=1))
    with pytest.raises(ValidationFailed, match="expired"):
        await gift_card_service.apply_gift_card(
            db_session, code=expired.code, order_total=Decimal("10")
        )

    unpaid = await _issue(db_session)
    unpaid.stripe_checkout_session_id = "cs_test_open"
    await db_session.commit()
    with pytest.raises(ValidationFailed, match="payment"):
        await gift_card_service.apply_gift_card(
            db_session, code=unpaid.code, order_total=Decimal("10")
        )


async def test_try_debit_balance_is_conditional(db_session) -> None:
    card = await _issue(db_session, amount="20.00")

    assert await gift_card_service.try_debit_balance(
        db_session, gift_card_id=card.id, amount=Decimal("15.00")
    )
    assert not await gift_card_service.try_debit_balance(
        db_session, gift_card_id=card.id, amount=Decimal("10.00")
    )
    await db_session.commit()
    await db_session.refresh(card)
    assert card.balance == Decimal("5.00")


async def test_redeem_exhausts_card_and_is_idempotent_per_order(db_session) -> None:
    card = await _issue(db_session, amount="25.00")
    order_id = uuid.uuid4()

    first = await gift_card_service.redeem_gift_card(
        db_session, code=card.code, amount=Decimal("25.00"), order_id=order_id
    )
    await db_session.commit()
    second = await gift_card_service.redeem_gift_card(
        db_session, code=card.code, amount=Decimal("25.00"), order_id=order_id
    )

    assert first.id == second.id
    await db_session.refresh(card)
    assert card.balance == Decimal("0.00")
    assert card.status is GiftCardStatus.USED
    assert card.used is True
    assert await gift_card_service.ledger_balance(db_session, card) == Decimal("0.00")


async def test_redeem_rejects_overdraw(db_session) -> None:
    card = await _issue(db_session, amount="10.00")

    with pytest.raises(ValidationFailed, match="Insufficient"):
        await gift_card_service.redeem_gift_card(
            db_session, code=card.code, amount=Decimal("10.01")
        )


async def test_restore_reactivates_and_caps_at_card_value(db_session) -> None:
    card = await _issue(db_session, amount="40.00")
    await gift_card_service.redeem_gift_card(
        db_session, code=card.code, amount=Decimal("40.00")
    )
    await db_session.commit()

    await gift_card_service.restore_gift_card(
        db_session, gift_card_id=card.id, amount=Decimal("40.00")
    )
    await db_session.commit()
    await db_session.refresh(card)
    assert card.balance == Decimal("40.00")
    assert card.status is GiftCardStatus.ACTIVE
    assert card.used is False

    with pytest.raises(StateConflict):
        await gift_card_service.restore_gift_card(
            db_session, gift_card_id=card.id, amount=Decimal("0.01")
        )


async def test_update_balance_records_adjustment_and_keeps_ledger_consistent(
    db_session,
) -> None:
    card = await _issue(db_session, amount="60.00")

    updated = await gift_card_service.update_gift_card(
        db_session, gift_card_id=card.id, balance=Decimal("35.00")
    )
    assert updated.balance == Decimal("35.00")
    assert await gift_card_service.ledger_balance(db_session, updated) == Decimal("35.00")
    adjustments = [
        row for row in updated.transactions if row.notes == "Manual balance adjustment"
    ]
    assert len(adjustments) == 1
    assert adjustments[0].amount == Decimal("-25.00")

    with pytest.raises(ValidationFailed):
        await gift_card_service.update_gift_card(
            db_session, gift_card_id=card.id, balance=Decimal("61.00")
        )


async def test_delete_refuses_used_cards(db_session) -> None:
    fresh = await _issue(db_session)
    await gift_card_service.delete_gift_card(db_session, gift_card_id=fresh.id)
    assert await gift_card_service.get_by_code(db_session, fresh.code) is None

    spent = await _issue(db_session)
    await gift_card_service.redeem_gift_card(
        db_session, code=spent.code, amount=Decimal("5.00")
    )
    await db_session.commit()
    with pytest.raises(StateConflict):
        await gift_card_service.delete_gift_card(db_session, gift_card_id=spent.id)


async def test_derive_status_prefers_expiry() -> None:
    card = GiftCard(
        code="ABCDEFGH",
        amount=Decimal("10"),
        balance=Decimal("0"),
        expiry_date=date(2020, 1, 1),
    )
    assert gift_card_service.derive_status(card, today=date(2021, 1, 1)) is GiftCardStatus.EXPIRED
    assert gift_card_service.derive_status(card, today=date(2019, 1, 1)) is GiftCardStatus.USED
