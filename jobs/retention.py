import time
from threading import Thread

from core.config import cfg
from core.db import DB
from core.retention_service import sweep_chat_retention
from core.log import get_logger, trace_ctx
from core.events import log_event, E

logger = get_logger(__name__)

DAY_SECONDS = 24 * 60 * 60


def run_retention_sweep_once():
    session = DB.get_session()
    try:
        return sweep_chat_retention(session)
    finally:
        session.close()


def _worker_loop():
    interval = max(60, int(cfg.get("retention.sweep_interval_seconds", DAY_SECONDS) or DAY_SECONDS))
    while True:
        with trace_ctx("retention"):
            try:
                result = run_retention_sweep_once()
                if result.get("failed_users"):
                    logger.warning("聊天保留清理部分用户失败: %s", result["failed_users"])
            except Exception:
                # 下一轮继续清理
                logger.exception("聊天保留清理异常")
        time.sleep(interval)


def start_retention_sweep_worker():
    t = Thread(target=_worker_loop, name="retention-sweep", daemon=True)
    t.start()
    log_event(logger, E.SYSTEM_JOB_START, job="retention_sweep")
    return t
