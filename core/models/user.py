from .base import Base, Column, String, Integer, BigInteger, Float, DateTime, Boolean


class User(Base):
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), default="")
    display_name = Column(String(120), default="")
    role = Column(String(20), default="user")  # user/consultant/admin

    # 套餐，时间字段均为毫秒时间戳
    plan = Column(String(32), nullable=True, index=True)
    plan_name = Column(String(120), nullable=True)
    plan_purchased_at = Column(BigInteger, nullable=True)
    plan_updated_at = Column(BigInteger, nullable=True)
    plan_expiry_date = Column(BigInteger, nullable=True, index=True)
    had_subscription_before = Column(Boolean, default=False)

    # 额度
    token_limit = Column(Integer, default=0)
    tokens_used = Column(Integer, default=0)
    last_token_update = Column(BigInteger, nullable=True)
    chat_retention_days = Column(Integer, default=10)
    voice_minutes_remaining = Column(Float, default=0)
    appointments_total = Column(Integer, default=0)
    appointments_used = Column(Integer, default=0)
    appointments_reset_date = Column(BigInteger, nullable=True)
    additional_appointments = Column(Integer, default=0)

    # 支付处理中的租约，过期时间戳；到期扫描会跳过持有租约的用户
    payment_lease_until = Column(BigInteger, nullable=True)

    created_at = Column(DateTime)
    updated_at = Column(DateTime)
