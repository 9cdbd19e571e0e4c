import time
from threading import Thread

from core.config import cfg
from core.db import DB
from core.subscription_service import sweep_expired_subscriptions
from core.log import get_logger, trace_ctx
from core.events import log_event, E

logger = get_logger(__name__)


def run_subscription_sweep_once():
    session = DB.get_session()
    try:
        log_event(logger, E.BILLING_SWEEP_START)
        result = sweep_expired_subscriptions(session=session, limit=1000)
        log_event(logger, E.BILLING_SWEEP_COMPLETE, total=int(result.get("total", 0) or 0))
        return result
    finally:
        session.close()


def _worker_loop():
    interval = max(60, int(cfg.get("billing.subscription_sweep_interval_seconds", 3600) or 3600))
    while True:
        with trace_ctx("billing"):
            try:
                run_subscription_sweep_once()
            except Exception:
                logger.exception("订阅到期扫描异常")
        time.sleep(interval)


def start_subscription_sweep_worker():
    t = Thread(target=_worker_loop, name="subscription-sweep", daemon=True)
    t.start()
    log_event(logger, E.SYSTEM_JOB_START, job="subscription_sweep")
    return t
