"""Transactional email rendering and delivery."""

from __future__ import annotations

import logging
import smtplib
from decimal import Decimal
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Iterable

from fastapi import BackgroundTasks
from jinja2 import Environment, FileSystemLoader, select_autoescape

from atelier.core.config import get_settings
from atelier.models import GiftCard, Order, Reservation
from atelier.security.redact import mask_email

logger = logging.getLogger(__name__)

_TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates"
_ENV = Environment(
    loader=FileSystemLoader(_TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


def _euros(value: Decimal | None) -> str:
    amount = Decimal(value or 0).quantize(Decimal("0.01"))
    return f"{amount:.2f} €".replace(".", ",")


_ENV.filters["euros"] = _euros


def render(template_name: str, **context: Any) -> str:
    return _ENV.get_template(template_name).render(**context)


def schedule_email(
    background_tasks: BackgroundTasks | None,
    *,
    recipients: Iterable[str | None],
    subject: str,
    body: str,
) -> bool:
    """Queue an email to be delivered after the response is sent.

    Returns False when the email was skipped.
    """
    recipients_list = [addr for addr in recipients if addr]
    if not recipients_list:
        logger.debug("No recipients provided for email; skipping")
        return False
    if background_tasks is None:
        logger.debug("No background task runner; skipping email %r", subject)
        return False
    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_port:
        logger.debug(
            "SMTP disabled; skipping email to %s",
            [mask_email(addr) for addr in recipients_list],
        )
        return False
    background_tasks.add_task(_send_email, recipients_list, subject, body)
    return True


def build_order_confirmation_email(order: Order) -> tuple[str, str]:
    subject = f"Confirmation de votre commande #{str(order.id)[:8]}"
    body = render(
        "order_confirmation.html",
        name=order.contact_name,
        order=order,
        items=order.items,
        amount_due=order.total_amount - (order.gift_card_amount or Decimal("0")),
    )
    return subject, body


def build_order_refund_email(order: Order, *, reason: str | None) -> tuple[str, str]:
    subject = f"Remboursement de votre commande #{str(order.id)[:8]}"
    body = render(
        "order_refund.html",
        name=order.contact_name,
        order=order,
        reason=reason,
        details=order.refund_details or {},
    )
    return subject, body


def build_workshop_confirmation_email(reservation: Reservation) -> tuple[str, str]:
    workshop = reservation.workshop
    subject = f"Votre réservation pour l'atelier {workshop.title} est confirmée"
    body = render(
        "workshop_confirmation.html",
        name=reservation.contact_name,
        reservation=reservation,
        workshop=workshop,
        workshop_session=reservation.workshop_session,
    )
    return subject, body


def build_workshop_cancellation_email(
    reservation: Reservation, *, reason: str | None
) -> tuple[str, str]:
    workshop = reservation.workshop
    subject = f"Annulation de votre réservation : {workshop.title}"
    body = render(
        "workshop_cancellation.html",
        name=reservation.contact_name,
        reservation=reservation,
        workshop=workshop,
        workshop_session=reservation.workshop_session,
        reason=reason,
        details=reservation.refund_details or {},
    )
    return subject, body


def build_gift_card_email(card: GiftCard) -> tuple[str, str]:
    subject = "Vous avez reçu une carte cadeau"
    body = render(
        "gift_card_delivery.html",
        recipient_name=card.recipient_name,
        purchaser_name=card.purchaser_name,
        card=card,
    )
    return subject, body


def _send_email(recipients: list[str], subject: str, body: str) -> None:
    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_port:
        logger.info("SMTP configuration missing; skipping email %r", subject)
        return
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = (
        settings.smtp_from or settings.smtp_username or "no-reply@atelier.local"
    )
    message["To"] = ", ".join(recipients)
    message.set_content("Ce message contient du contenu HTML.")
    message.add_alternative(body, subtype="html")

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            if settings.smtp_username and settings.smtp_password:
                try:
                    server.starttls()
                except smtplib.SMTPException:
                    logger.debug("SMTP server does not support STARTTLS")
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
    except Exception:  # pragma: no cover - network dependent
        logger.exception(
            "Failed to send email %r to %s",
            subject,
            [mask_email(addr) for addr in recipients],
        )
