"""
The single write path for a payment intent's status.

States: PENDING (initial) -> PAID | CANCELLED | EXPIRED (terminal). The move
out of PENDING is a conditional UPDATE matching only pending rows, so when a
webhook and a poll tick race on the same intent exactly one of them changes
the row and the other sees a terminal status and does nothing. Re-applying,
reordering or duplicating updates therefore never changes the outcome, which
is the first terminal value written.
"""
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select, update

from reconciler.models import Order, PaymentIntent
from reconciler.status import CanonicalStatus, ProviderKind
from reconciler.store import utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    changed: bool
    first_entry_to_paid: bool = False
    # stored status after the call; None when no intent matched
    status: CanonicalStatus | None = None
    order_id: str | None = None
    # a different terminal value arrived for an already terminal intent
    conflict: bool = False

    @property
    def found(self) -> bool:
        return self.status is not None

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal


class TransitionEngine:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def apply_status(
        self,
        order_id: str | None,
        provider_reference: str,
        new_status: CanonicalStatus,
        provider_kind: ProviderKind | None = None,
        raw_payload: Any = None,
    ) -> TransitionResult:
        """
        Apply a canonical status to the intent identified by provider_reference.

        Never raises for an unknown reference or an already terminal intent;
        both return changed=False.
        """
        new_status = CanonicalStatus(new_status)
        log = logger.bind(provider_reference=provider_reference, new_status=new_status.value)

        stmt = select(PaymentIntent).where(PaymentIntent.provider_reference == str(provider_reference))
        if provider_kind is not None:
            stmt = stmt.where(PaymentIntent.provider_kind == ProviderKind(provider_kind).value)

        with self._session_factory() as db:
            intent = db.execute(stmt.order_by(PaymentIntent.id.desc())).scalars().first()
            if intent is None:
                log.info("transition_intent_not_found")
                return TransitionResult(changed=False)
            intent_id, owner_order_id = intent.id, intent.order_id
            if order_id is not None and str(order_id) != owner_order_id:
                log.warning("transition_order_mismatch", order_id=order_id, intent_order_id=owner_order_id)
                return TransitionResult(changed=False)

            current = CanonicalStatus(intent.canonical_status)
            log = log.bind(order_id=owner_order_id, current_status=current.value)

            if current.is_terminal:
                conflict = new_status.is_terminal and new_status is not current
                if conflict:
                    log.warning("terminal_status_conflict")
                else:
                    log.debug("transition_already_terminal")
                return TransitionResult(changed=False, status=current, order_id=owner_order_id, conflict=conflict)

            values = {"last_checked_at": utcnow()}
            if raw_payload is not None:
                values["raw_provider_payload"] = raw_payload
            guarded = (
                update(PaymentIntent)
                .where(
                    PaymentIntent.id == intent_id,
                    PaymentIntent.canonical_status == CanonicalStatus.PENDING.value,
                )
                .execution_options(synchronize_session=False)
            )

            if new_status is CanonicalStatus.PENDING:
                result = db.execute(guarded.values(**values))
                db.commit()
                if result.rowcount == 1:
                    return TransitionResult(changed=False, status=current, order_id=owner_order_id)
                db.expire_all()
                winner = CanonicalStatus(db.get(PaymentIntent, intent_id).canonical_status)
                return TransitionResult(changed=False, status=winner, order_id=owner_order_id)

            result = db.execute(guarded.values(canonical_status=new_status.value, **values))
            if result.rowcount != 1:
                # another writer moved it out of pending first
                db.rollback()
                db.expire_all()
                winner = CanonicalStatus(db.get(PaymentIntent, intent_id).canonical_status)
                log.info("transition_lost_race", winner_status=winner.value)
                return TransitionResult(
                    changed=False,
                    status=winner,
                    order_id=owner_order_id,
                    conflict=winner.is_terminal and winner is not new_status,
                )

            db.execute(
                update(Order)
                .where(Order.id == owner_order_id)
                .values(payment_status=new_status.value)
                .execution_options(synchronize_session=False)
            )
            db.commit()

        first_paid = new_status is CanonicalStatus.PAID
        log.info("status_transition_applied", first_entry_to_paid=first_paid)
        return TransitionResult(
            changed=True,
            first_entry_to_paid=first_paid,
            status=new_status,
            order_id=owner_order_id,
        )
