"""
Read/write access to payment intents and the order columns this service owns.

Every method opens and closes its own session from the factory it was given,
so one store can be shared across request handlers and poller threads.
"""
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from reconciler.errors import ActiveIntentExists
from reconciler.models import Order, PaymentIntent
from reconciler.providers.base import CreatedPayment
from reconciler.status import CanonicalStatus, ProviderKind

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, order_id: str) -> Order | None:
        with self._session_factory() as db:
            return db.get(Order, order_id)

    def find_by_payment_reference(self, reference: str) -> Order | None:
        with self._session_factory() as db:
            return db.query(Order).filter_by(payment_reference=reference).first()


class IntentStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def find_by_reference(self, reference: str, kind: ProviderKind | None = None) -> PaymentIntent | None:
        stmt = select(PaymentIntent).where(PaymentIntent.provider_reference == str(reference))
        if kind is not None:
            stmt = stmt.where(PaymentIntent.provider_kind == ProviderKind(kind).value)
        with self._session_factory() as db:
            return db.execute(stmt.order_by(PaymentIntent.id.desc())).scalars().first()

    def find_active(self, order_id: str) -> PaymentIntent | None:
        with self._session_factory() as db:
            return db.query(PaymentIntent).filter_by(
                order_id=order_id, canonical_status=CanonicalStatus.PENDING.value
            ).first()

    def latest_for_order(self, order_id: str, kind: ProviderKind) -> PaymentIntent | None:
        with self._session_factory() as db:
            return (
                db.query(PaymentIntent)
                .filter_by(order_id=order_id, provider_kind=ProviderKind(kind).value)
                .order_by(PaymentIntent.id.desc())
                .first()
            )

    def list_for_order(self, order_id: str) -> list[PaymentIntent]:
        with self._session_factory() as db:
            return (
                db.query(PaymentIntent)
                .filter_by(order_id=order_id)
                .order_by(PaymentIntent.id.desc())
                .all()
            )

    def record_created(self, order_id: str, kind: ProviderKind, amount_minor_units: int,
                       created: CreatedPayment) -> PaymentIntent:
        """Insert the intent and stamp reference and method on the order in one commit."""
        kind = ProviderKind(kind)
        intent = PaymentIntent(
            order_id=order_id,
            provider_kind=kind.value,
            provider_reference=created.provider_reference,
            amount_minor_units=amount_minor_units,
            canonical_status=CanonicalStatus.PENDING.value,
            raw_provider_payload=created.raw,
            created_at=utcnow(),
        )
        with self._session_factory() as db:
            db.add(intent)
            order = db.get(Order, order_id)
            if order is not None:
                order.payment_reference = created.provider_reference
                order.payment_method = kind.value
                order.payment_status = CanonicalStatus.PENDING.value
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning("payment_intent_insert_conflict", order_id=order_id,
                               provider=kind.value, provider_reference=created.provider_reference)
                raise ActiveIntentExists(f"Order {order_id} already has an active payment", provider=kind.value)
            db.refresh(intent)
            db.expunge(intent)

        logger.info("payment_intent_created", order_id=order_id, provider=kind.value,
                    provider_reference=intent.provider_reference, amount_minor_units=amount_minor_units)
        return intent
