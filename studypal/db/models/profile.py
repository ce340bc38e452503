from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from studypal.db.base import Base


class Profile(Base):
    """
    Per-user profile mirroring the auth provider's user id.

    plan_type is changed only by the payment and downgrade flows.
    """
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)  # auth provider user id (uuid)
    email = Column(String, nullable=True, index=True)
    plan_type = Column(String, default="free", nullable=False)  # free | gold | diamond

    stripe_customer_id = Column(String, nullable=True, index=True)
    last_payment_intent_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
