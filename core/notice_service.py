import uuid
from datetime import datetime
from typing import Dict, List

from core.log import get_logger
from core.events import log_event, E
from core.models.user_notice import UserNotice

logger = get_logger(__name__)


def create_notice(session, owner_id: str, title: str, content: str, notice_type: str, ref_id: str = None):
    """创建站内信，随调用方事务提交。"""
    notice = UserNotice(
        id=str(uuid.uuid4()),
        owner_id=str(owner_id or "").strip(),
        title=str(title or "")[:300],
        content=str(content or ""),
        notice_type=str(notice_type or "system")[:32],
        status=0,
        ref_id=str(ref_id)[:255] if ref_id else None,
        created_at=datetime.now(),
    )
    session.add(notice)
    log_event(logger, E.NOTICE_CREATE, owner_id=owner_id, type=notice_type, title=str(title or "")[:100])
    return notice


def serialize_notice(item: UserNotice) -> Dict:
    return {
        "id": item.id,
        "title": item.title or "",
        "message": item.content or "",
        "type": item.notice_type or "",
        "read": int(item.status or 0) == 1,
        "refId": item.ref_id,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
    }


def list_notices(session, owner_id: str, unread_only: bool = False, limit: int = 50) -> List[Dict]:
    query = session.query(UserNotice).filter(UserNotice.owner_id == owner_id)
    if unread_only:
        query = query.filter(UserNotice.status == 0)
    rows = query.order_by(UserNotice.created_at.desc()).limit(max(1, min(int(limit or 50), 200))).all()
    return [serialize_notice(x) for x in rows]


def mark_all_read(session, owner_id: str) -> int:
    count = (
        session.query(UserNotice)
        .filter(UserNotice.owner_id == owner_id, UserNotice.status == 0)
        .update({"status": 1}, synchronize_session=False)
    )
    session.commit()
    log_event(logger, E.NOTICE_READ_ALL, owner_id=owner_id, count=count)
    return count
