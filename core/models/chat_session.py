from .base import Base, Column, String, DateTime, Text


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(128), index=True, nullable=False)
    title = Column(String(255), default="")
    # 有序消息数组的 JSON，每条消息带 timestamp（毫秒或 ISO 字符串）
    messages_json = Column(Text, default="[]")
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
