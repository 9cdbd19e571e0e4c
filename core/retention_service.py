import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.events import log_event, E
from core.log import get_logger
from core.models.chat_session import ChatSession
from core.models.user import User as DBUser
from core.plan_service import DAY_MS, now_ms

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 10


def retention_days_for(user: DBUser) -> int:
    try:
        days = int(user.chat_retention_days)
    except (TypeError, ValueError):
        return DEFAULT_RETENTION_DAYS
    return days if days > 0 else DEFAULT_RETENTION_DAYS


def message_timestamp_ms(message: Any) -> Optional[int]:
    """消息时间戳统一为毫秒；无法识别时返回 None（该消息保留）。"""
    if not isinstance(message, dict):
        return None
    value = message.get("timestamp")
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, dict) and "seconds" in value:
        # Firestore Timestamp 导出格式
        try:
            return int(value["seconds"]) * 1000 + int(value.get("nanoseconds", 0)) // 1_000_000
        except (TypeError, ValueError):
            return None
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    try:
        return int(datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return None


def prune_messages(messages: List[Any], cutoff: int) -> List[Any]:
    kept = []
    for message in messages:
        ts = message_timestamp_ms(message)
        if ts is None or ts >= cutoff:
            kept.append(message)
    return kept


def _load_messages(chat: ChatSession) -> List[Any]:
    try:
        data = json.loads(chat.messages_json or "[]")
    except ValueError:
        logger.warning("聊天会话消息格式异常，跳过: session_id=%s", chat.id)
        return []
    return data if isinstance(data, list) else []


def sweep_user_sessions(session, user: DBUser, now: int) -> Dict:
    days = retention_days_for(user)
    cutoff = now - days * DAY_MS
    pruned_sessions = 0
    removed = 0
    chats = session.query(ChatSession).filter(ChatSession.user_id == user.id).all()
    for chat in chats:
        messages = _load_messages(chat)
        if not messages:
            continue
        kept = prune_messages(messages, cutoff)
        if len(kept) == len(messages):
            continue
        # 整体替换消息数组
        chat.messages_json = json.dumps(kept, ensure_ascii=False)
        chat.updated_at = datetime.now()
        pruned_sessions += 1
        removed += len(messages) - len(kept)
        log_event(logger, E.RETENTION_SESSION_PRUNE, user_id=user.id, session_id=chat.id,
                  removed=len(messages) - len(kept), retention_days=days)
    return {"sessions_pruned": pruned_sessions, "messages_removed": removed}


def sweep_chat_retention(session, now: int = None) -> Dict:
    """
    按用户套餐的保留天数清理过期聊天消息。
    每个用户单独提交，单个用户失败只回滚该用户并继续处理后续用户。
    """
    now = now if now is not None else now_ms()
    log_event(logger, E.RETENTION_SWEEP_START, now=now)
    user_ids = [row[0] for row in session.query(DBUser.id).order_by(DBUser.id).all()]

    result = {"users": 0, "sessions_pruned": 0, "messages_removed": 0, "failed_users": []}
    for user_id in user_ids:
        try:
            user = session.query(DBUser).filter(DBUser.id == user_id).first()
            if not user:
                continue
            stats = sweep_user_sessions(session, user, now)
            if stats["sessions_pruned"]:
                session.commit()
            result["users"] += 1
            result["sessions_pruned"] += stats["sessions_pruned"]
            result["messages_removed"] += stats["messages_removed"]
        except Exception as e:
            session.rollback()
            result["failed_users"].append(user_id)
            log_event(logger, E.RETENTION_USER_FAIL, level="error", user_id=user_id, error=str(e))
            logger.exception("聊天保留清理失败: user_id=%s", user_id)

    log_event(
        logger,
        E.RETENTION_SWEEP_COMPLETE,
        users=result["users"],
        sessions=result["sessions_pruned"],
        removed=result["messages_removed"],
        failed=len(result["failed_users"]),
    )
    return result
