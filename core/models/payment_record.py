from .base import Base, Column, String, DateTime, Integer


class PaymentRecord(Base):
    __tablename__ = "payments"

    session_id = Column(String(64), primary_key=True)
    user_id = Column(String(128), index=True, nullable=False)
    plan_id = Column(String(32), nullable=False)
    plan_name = Column(String(120), nullable=False, default="")
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(16), nullable=False, default="INR")
    status = Column(String(32), nullable=False, default="pending", index=True)  # pending/completed/failed
    gateway_state = Column(String(32), nullable=True)
    transaction_id = Column(String(128), nullable=True)
    payment_mode = Column(String(64), nullable=True)
    paid_amount_cents = Column(Integer, nullable=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
