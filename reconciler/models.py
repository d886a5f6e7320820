from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, UniqueConstraint, text
from reconciler.database import Base
from reconciler.status import CanonicalStatus


class Order(Base):
    """The columns of the externally owned orders table this service uses."""

    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    order_number = Column(String)
    payment_method = Column(String)                # pix | pix_brasil | mercadopago
    payment_reference = Column(String, index=True)
    payment_status = Column(String, default=CanonicalStatus.PENDING.value)
    total = Column(Integer)                        # minor units
    customer_name = Column(String)
    customer_email = Column(String)
    customer_phone = Column(String)
    delivery_address = Column(String)


class PaymentIntent(Base):
    __tablename__ = "payment_intents"
    __table_args__ = (
        UniqueConstraint("provider_kind", "provider_reference", name="uq_intent_provider_reference"),
        # one non-terminal intent per order
        Index(
            "uq_intent_active_per_order",
            "order_id",
            unique=True,
            sqlite_where=text("canonical_status = 'pending'"),
            postgresql_where=text("canonical_status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, index=True, nullable=False)
    provider_kind = Column(String, nullable=False)
    provider_reference = Column(String, nullable=False)
    amount_minor_units = Column(Integer, nullable=False)
    canonical_status = Column(String, nullable=False, default=CanonicalStatus.PENDING.value)
    raw_provider_payload = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_checked_at = Column(DateTime(timezone=True))
