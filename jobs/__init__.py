def start_all_jobs():
    from core.config import cfg
    from jobs.billing import start_subscription_sweep_worker
    from jobs.retention import start_retention_sweep_worker

    start_subscription_sweep_worker()
    if cfg.get("retention.enabled", True):
        start_retention_sweep_worker()
