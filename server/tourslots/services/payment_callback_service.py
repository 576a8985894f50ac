"""Payment webhook handling: confirm or release reservations settled by the provider."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.exceptions import PaymentVerificationFailedError
from ..core.observability import metrics_collector
from ..models.reservation import Reservation, ReservationStatus
from ..schemas.reservation import WebhookAck
from .payment_gateway import PaymentGateway, SignatureVerificationFailed
from .reservation_service import ReservationService

logger = logging.getLogger(__name__)

CONFIRM_EVENTS = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})
RELEASE_EVENTS = frozenset({
    "checkout.session.expired",
    "checkout.session.async_payment_failed",
})


def parse_reservation_ids(raw: Any) -> list[UUID]:
    """Decode the comma-joined reservation IDs stored in session metadata."""
    if not raw:
        return []
    values = raw if isinstance(raw, list) else str(raw).split(",")
    ids = []
    for value in values:
        value = str(value).strip()
        if not value:
            continue
        try:
            ids.append(UUID(value))
        except ValueError:
            logger.warning("Ignoring malformed reservation id in webhook metadata", extra={"value": value})
    return ids


class PaymentCallbackService:
    """Service applying payment provider events to the reservation ledger."""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.reservations = ReservationService(db)

    def verify_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """
        Authenticate a webhook payload.

        Raises:
            PaymentVerificationFailedError: If the signature is missing or invalid
        """
        try:
            return self.gateway.verify_webhook(payload, signature_header)
        except SignatureVerificationFailed as e:
            metrics_collector.record_webhook("unknown", "rejected")
            logger.warning(
                "Rejected webhook with invalid signature",
                extra={"error": str(e), "payload_bytes": len(payload)}
            )
            raise PaymentVerificationFailedError() from e

    async def on_payment_succeeded(
        self,
        session_ref: str,
        reservation_ids: list[UUID],
        payment_intent_id: str | None = None,
    ) -> WebhookAck:
        """
        Confirm the pending reservations paid for by ``session_ref``.

        Safe to replay: already-confirmed rows are reported and left alone.
        Holds that were released before payment arrived cannot be confirmed
        without re-checking capacity, so they are reported for manual refund.
        """
        if not reservation_ids:
            reservation_ids = [r.id for r in await self.reservations.list_by_session(session_ref)]

        now = utcnow()
        belongs_to_session = or_(
            Reservation.payment_session_id.is_(None),
            Reservation.payment_session_id == session_ref,
        )

        # Holds that lapsed without being swept yet no longer count against capacity
        await self.db.execute(
            update(Reservation)
            .where(
                Reservation.id.in_(reservation_ids),
                Reservation.status == ReservationStatus.PENDING,
                Reservation.expires_at <= now,
            )
            .values(
                status=ReservationStatus.CANCELLED,
                cancellation_reason="hold_expired",
                expires_at=None,
                updated_at=now,
            )
        )

        result = await self.db.execute(
            update(Reservation)
            .where(
                Reservation.id.in_(reservation_ids),
                Reservation.status == ReservationStatus.PENDING,
                belongs_to_session,
            )
            .values(
                status=ReservationStatus.CONFIRMED,
                payment_session_id=session_ref,
                payment_intent_id=payment_intent_id,
                expires_at=None,
                updated_at=now,
            )
            .returning(Reservation.id)
        )
        confirmed = set(result.scalars())
        await self.db.commit()

        rows = await self.db.execute(
            select(Reservation.id, Reservation.status, Reservation.payment_session_id)
            .where(Reservation.id.in_(reservation_ids))
        )
        states = {row.id: (ReservationStatus(row.status), row.payment_session_id) for row in rows}

        ack = WebhookAck(event_type="payment_succeeded")
        for reservation_id in reservation_ids:
            status, session_id = states.get(reservation_id, (None, None))
            if reservation_id in confirmed:
                ack.confirmed.append(str(reservation_id))
            elif status in (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED) and session_id == session_ref:
                ack.already_confirmed.append(str(reservation_id))
            else:
                ack.unconfirmable.append(str(reservation_id))

        metrics_collector.record_reservations_confirmed(len(ack.confirmed))

        if ack.unconfirmable:
            logger.error(
                "Paid reservations could not be confirmed and need a refund",
                extra={
                    "session_id": session_ref,
                    "payment_intent_id": payment_intent_id,
                    "reservation_ids": ack.unconfirmable
                }
            )

        logger.info(
            "Payment confirmation applied",
            extra={
                "session_id": session_ref,
                "confirmed": len(ack.confirmed),
                "already_confirmed": len(ack.already_confirmed),
                "unconfirmable": len(ack.unconfirmable)
            }
        )
        return ack

    async def on_payment_session_expired(self, session_ref: str, reason: str = "payment_session_expired") -> WebhookAck:
        """Release whatever the abandoned payment session still holds."""
        pending_ids = [
            r.id for r in await self.reservations.list_by_session(session_ref)
            if r.status == ReservationStatus.PENDING
        ]
        released = await self.reservations.release(pending_ids, reason)
        return WebhookAck(event_type="payment_session_expired", released=[str(i) for i in released])

    async def handle_event(self, event: dict[str, Any]) -> WebhookAck:
        """Dispatch a verified provider event by type; unknown types are acknowledged."""
        event_type = event.get("type", "")
        session = (event.get("data") or {}).get("object") or {}
        session_ref = session.get("id")

        if event_type in CONFIRM_EVENTS and session_ref:
            if event_type == "checkout.session.completed" and session.get("payment_status") == "unpaid":
                # Delayed payment methods settle later via async_payment_succeeded
                ack = WebhookAck(event_type=event_type)
                outcome = "deferred"
            else:
                metadata = session.get("metadata") or {}
                reservation_ids = parse_reservation_ids(
                    metadata.get("reservation_ids") or metadata.get("reservationIds")
                )
                ack = await self.on_payment_succeeded(
                    session_ref, reservation_ids, session.get("payment_intent")
                )
                outcome = "unconfirmable" if ack.unconfirmable else "confirmed"
        elif event_type in RELEASE_EVENTS and session_ref:
            reason = "payment_failed" if event_type.endswith("async_payment_failed") else "payment_session_expired"
            ack = await self.on_payment_session_expired(session_ref, reason)
            outcome = "released"
        else:
            logger.info("Ignoring webhook event", extra={"event_type": event_type, "event_id": event.get("id")})
            ack = WebhookAck(event_type=event_type)
            outcome = "ignored"

        ack.event_type = event_type
        metrics_collector.record_webhook(event_type, outcome)
        return ack
