"""Seat accounting, booking, waitlist and stale hold behaviour."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from atelier.core.errors import PaymentGatewayError, StateConflict, ValidationFailed
from atelier.db.session import get_sessionmaker
from atelier.models import (
    GiftCard,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    ReservationStatus,
    User,
    WorkshopSession,
)
from atelier.services import capacity_service, gift_card_service, workshop_service

pytestmark = pytest.mark.asyncio

GUEST = workshop_service.GuestContact(name="Léa Martin", email="Lea@Example.com")


async def _booked(session, session_id) -> int:
    workshop_session = await session.get(WorkshopSession, session_id)
    await session.refresh(workshop_session)
    return workshop_session.booked_count


async def test_try_reserve_seats_never_overbooks(db_session, make_workshop) -> None:
    _, slot = await make_workshop(capacity=3)

    assert await capacity_service.try_reserve_seats(
        db_session, session_id=slot.id, quantity=2
    )
    assert not await capacity_service.try_reserve_seats(
        db_session, session_id=slot.id, quantity=2
    )
    assert await capacity_service.try_reserve_seats(
        db_session, session_id=slot.id, quantity=1
    )
    await db_session.commit()
    assert await _booked(db_session, slot.id) == 3


async def test_concurrent_holds_respect_capacity(reset_database, db_url, make_workshop) -> None:
    _, slot = await make_workshop(capacity=2)
    sessionmaker = get_sessionmaker(db_url)

    async def _hold() -> bool:
        async with sessionmaker() as session:
            held = await capacity_service.try_reserve_seats(
                session, session_id=slot.id, quantity=1
            )
            await session.commit()
            return held

    results = await asyncio.gather(*(_hold() for _ in range(5)))

    assert results.count(True) == 2
    async with sessionmaker() as session:
        assert await _booked(session, slot.id) == 2


async def test_release_seats_clamps_at_zero(db_session, make_workshop) -> None:
    _, slot = await make_workshop(capacity=4)
    await capacity_service.try_reserve_seats(db_session, session_id=slot.id, quantity=1)
    await capacity_service.release_seats(db_session, session_id=slot.id, quantity=3)
    await db_session.commit()

    assert await _booked(db_session, slot.id) == 0


async def test_try_reserve_rejects_non_positive_quantity(db_session, make_workshop) -> None:
    _, slot = await make_workshop()
    with pytest.raises(ValidationFailed):
        await capacity_service.try_reserve_seats(db_session, session_id=slot.id, quantity=0)


async def test_on_site_booking_confirms_and_holds_seats(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(capacity=4)

    result = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=2,
        user=None,
        guest=GUEST,
    )

    reservation = result.reservation
    assert result.waitlisted is False
    assert reservation.status is ReservationStatus.CONFIRMED
    assert reservation.payment_status is PaymentStatus.UNPAID
    assert reservation.payment_method is PaymentMethod.ON_SITE
    assert reservation.total_amount == Decimal("90.00")
    assert reservation.guest_email == "lea@example.com"
    assert await _booked(db_session, slot.id) == 2


async def test_free_workshop_is_marked_paid(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(price="0")

    result = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=None,
        guest=GUEST,
    )

    assert result.reservation.payment_status is PaymentStatus.PAID
    assert result.reservation.payment_method is PaymentMethod.FREE


async def test_full_session_goes_to_waitlist_in_order(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(capacity=1)
    await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )

    first = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    second = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )

    assert first.waitlisted and second.waitlisted
    assert first.reservation.waitlist_position == 1
    assert second.reservation.waitlist_position == 2
    assert await _booked(db_session, slot.id) == 1


async def test_guest_booking_requires_name_and_valid_email(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop()

    with pytest.raises(ValidationFailed, match="name"):
        await workshop_service.book_workshop(
            db_session,
            workshop_id=workshop.id,
            session_id=slot.id,
            quantity=1,
            user=None,
            guest=workshop_service.GuestContact(email="lea@example.com"),
        )
    with pytest.raises(ValidationFailed, match="email"):
        await workshop_service.book_workshop(
            db_session,
            workshop_id=workshop.id,
            session_id=slot.id,
            quantity=1,
            user=None,
            guest=workshop_service.GuestContact(name="Léa", email="not-an-email"),
        )


async def test_stripe_booking_holds_seats_pending_payment(
    db_session, make_workshop, stripe_client, stripe_sdk
) -> None:
    workshop, slot = await make_workshop(capacity=4)

    result = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=None,
        guest=GUEST,
        payment_provider=PaymentProvider.STRIPE,
        stripe=stripe_client,
    )

    reservation = result.reservation
    assert reservation.status is ReservationStatus.PENDING
    assert reservation.payment_status is PaymentStatus.PENDING
    assert reservation.stripe_checkout_session_id == result.checkout_session_id
    assert result.checkout_url.startswith("https://checkout.stripe.test/")
    checkout = stripe_sdk.checkouts[result.checkout_session_id]
    assert checkout["metadata"]["reservation_id"] == str(reservation.id)
    assert await _booked(db_session, slot.id) == 1


async def test_checkout_failure_releases_seats(
    db_session, make_workshop, stripe_client, stripe_sdk
) -> None:
    workshop, slot = await make_workshop(capacity=2)
    stripe_sdk.fail_with = "card network down"

    with pytest.raises(PaymentGatewayError, match="card network down"):
        await workshop_service.book_workshop(
            db_session,
            workshop_id=workshop.id,
            session_id=slot.id,
            quantity=2,
            user=None,
            guest=GUEST,
            payment_provider=PaymentProvider.STRIPE,
            stripe=stripe_client,
        )

    assert await _booked(db_session, slot.id) == 0
    assert await workshop_service.list_reservations(db_session, session_id=slot.id) == []


async def test_promote_waitlist_needs_free_seats(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(capacity=1)
    holder = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    waiting = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )

    with pytest.raises(StateConflict):
        await workshop_service.promote_waitlist(
            db_session, reservation_id=waiting.reservation.id
        )

    await workshop_service.cancel_reservation(
        db_session, reservation_id=holder.reservation.id, reason="Empêchement"
    )
    assert await _booked(db_session, slot.id) == 0

    promoted = await workshop_service.promote_waitlist(
        db_session, reservation_id=waiting.reservation.id
    )
    assert promoted.status is ReservationStatus.CONFIRMED
    assert promoted.waitlist_position is None
    assert await _booked(db_session, slot.id) == 1


async def test_cancelling_waitlisted_reservation_keeps_seats(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(capacity=1)
    await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    waiting = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )

    cancelled = await workshop_service.cancel_reservation(
        db_session, reservation_id=waiting.reservation.id
    )

    assert cancelled.status is ReservationStatus.CANCELLED
    assert cancelled.payment_status is PaymentStatus.CANCELLED
    assert await _booked(db_session, slot.id) == 1
    with pytest.raises(StateConflict):
        await workshop_service.cancel_reservation(
            db_session, reservation_id=waiting.reservation.id
        )


async def test_manual_booking_rejects_when_full(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(capacity=2)

    reservation = await workshop_service.manual_booking(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=2,
        guest=workshop_service.GuestContact(name="Paul Girard"),
    )
    assert reservation.status is ReservationStatus.CONFIRMED
    assert reservation.guest_email is None

    with pytest.raises(StateConflict, match="0 spot"):
        await workshop_service.manual_booking(
            db_session,
            workshop_id=workshop.id,
            session_id=slot.id,
            quantity=1,
            guest=workshop_service.GuestContact(name="Paul Girard"),
        )


async def test_release_stale_holds_only_touches_old_pending_payments(
    db_session, make_workshop, stripe_client
) -> None:
    workshop, slot = await make_workshop(capacity=4)
    stale = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=2,
        user=None,
        guest=GUEST,
        payment_provider=PaymentProvider.STRIPE,
        stripe=stripe_client,
    )
    fresh = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=None,
        guest=GUEST,
        payment_provider=PaymentProvider.STRIPE,
        stripe=stripe_client,
    )
    stale.reservation.created_at = datetime.now(UTC) - timedelta(hours=3)
    await db_session.commit()

    released = await workshop_service.release_stale_holds(
        db_session, older_than=timedelta(hours=1)
    )

    assert [item.id for item in released] == [stale.reservation.id]
    assert stale.reservation.status is ReservationStatus.CANCELLED
    assert stale.reservation.payment_status is PaymentStatus.CANCELLED
    assert fresh.reservation.status is ReservationStatus.PENDING
    assert await _booked(db_session, slot.id) == 1


async def test_user_booking_records_owner(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop()
    user = User(email="jeanne@example.com", first_name="Jeanne", last_name="Roux")
    db_session.add(user)
    await db_session.commit()

    result = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=user,
    )

    assert result.reservation.user_id == user.id
    assert result.reservation.guest_email is None
    assert result.reservation.contact_email == "jeanne@example.com"
    listed = await workshop_service.list_user_reservations(db_session, user=user)
    assert [item.id for item in listed] == [result.reservation.id]


async def _card_balance(session, card_id) -> Decimal:
    card = await session.get(GiftCard, card_id)
    await session.refresh(card)
    return card.balance


async def test_on_site_gift_card_is_redeemed_when_marked_paid(
    db_session, make_workshop, make_gift_card
) -> None:
    workshop, slot = await make_workshop(price="45.00")
    card = await make_gift_card(amount="10.00")

    result = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=None,
        guest=GUEST,
        gift_card_code=card.code,
    )
    reservation = result.reservation
    assert reservation.payment_method is PaymentMethod.ON_SITE
    assert reservation.gift_card_amount == Decimal("10.00")
    assert await _card_balance(db_session, card.id) == Decimal("10.00")

    paid = await workshop_service.mark_reservation_paid(
        db_session, reservation_id=reservation.id
    )

    assert paid.payment_status is PaymentStatus.PAID
    assert paid.payment_confirmed_at is not None
    assert await _card_balance(db_session, card.id) == Decimal("0.00")
    usage = await gift_card_service.usage_for_target(
        db_session, reservation_id=reservation.id
    )
    assert usage is not None and usage.amount == Decimal("-10.00")
    with pytest.raises(StateConflict, match="already paid"):
        await workshop_service.mark_reservation_paid(
            db_session, reservation_id=reservation.id
        )


async def test_mark_paid_rejects_waitlisted_reservation(db_session, make_workshop) -> None:
    workshop, slot = await make_workshop(capacity=1)
    await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    waiting = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )

    with pytest.raises(StateConflict, match="confirmed"):
        await workshop_service.mark_reservation_paid(
            db_session, reservation_id=waiting.reservation.id
        )


async def test_promotion_redeems_a_covering_gift_card(
    db_session, make_workshop, make_gift_card
) -> None:
    workshop, slot = await make_workshop(capacity=1)
    card = await make_gift_card(amount="50.00")
    holder = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    waiting = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=None,
        guest=GUEST,
        gift_card_code=card.code,
    )
    assert waiting.waitlisted
    assert await _card_balance(db_session, card.id) == Decimal("50.00")

    await workshop_service.cancel_reservation(
        db_session, reservation_id=holder.reservation.id, notify=False
    )
    promoted = await workshop_service.promote_waitlist(
        db_session, reservation_id=waiting.reservation.id
    )

    assert promoted.status is ReservationStatus.CONFIRMED
    assert promoted.payment_status is PaymentStatus.PAID
    assert promoted.payment_method is PaymentMethod.GIFT_CARD
    assert await _card_balance(db_session, card.id) == Decimal("5.00")


async def test_promotion_fails_cleanly_when_card_was_spent(
    db_session, make_workshop, make_gift_card
) -> None:
    workshop, slot = await make_workshop(capacity=1)
    card = await make_gift_card(amount="45.00")
    holder = await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    waiting = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=1,
        user=None,
        guest=GUEST,
        gift_card_code=card.code,
    )
    await gift_card_service.update_gift_card(
        db_session, gift_card_id=card.id, balance=Decimal("0.00")
    )
    await workshop_service.cancel_reservation(
        db_session, reservation_id=holder.reservation.id, notify=False
    )

    with pytest.raises(ValidationFailed):
        await workshop_service.promote_waitlist(
            db_session, reservation_id=waiting.reservation.id
        )

    assert await _booked(db_session, slot.id) == 0
    reservation = await workshop_service.get_reservation(
        db_session, reservation_id=waiting.reservation.id
    )
    await db_session.refresh(reservation)
    assert reservation.status is ReservationStatus.WAITLIST


@pytest.mark.parametrize("provider", [None, PaymentProvider.STRIPE])
async def test_cancelling_twice_releases_seats_once(
    db_session, make_workshop, stripe_client, provider
) -> None:
    workshop, slot = await make_workshop(capacity=5)
    await workshop_service.book_workshop(
        db_session, workshop_id=workshop.id, session_id=slot.id, quantity=1, user=None, guest=GUEST
    )
    booking = await workshop_service.book_workshop(
        db_session,
        workshop_id=workshop.id,
        session_id=slot.id,
        quantity=3,
        user=None,
        guest=GUEST,
        payment_provider=provider,
        stripe=stripe_client,
    )
    expected = (
        ReservationStatus.PENDING if provider is not None else ReservationStatus.CONFIRMED
    )
    assert booking.reservation.status is expected
    assert await _booked(db_session, slot.id) == 4

    await workshop_service.cancel_reservation(
        db_session, reservation_id=booking.reservation.id, notify=False
    )
    assert await _booked(db_session, slot.id) == 1

    with pytest.raises(StateConflict, match="already cancelled"):
        await workshop_service.cancel_reservation(
            db_session, reservation_id=booking.reservation.id, notify=False
        )
    assert await _booked(db_session, slot.id) == 1
