import argparse

import uvicorn

from core.config import cfg
from core.db import DB


def main():
    parser = argparse.ArgumentParser(description="Consult Pay 服务")
    parser.add_argument("--no-jobs", action="store_true", help="不启动后台扫描任务")
    args = parser.parse_args()

    DB.create_tables()
    if not args.no_jobs:
        from jobs import start_all_jobs
        start_all_jobs()

    uvicorn.run(
        "web:app",
        host=str(cfg.get("server.host", "0.0.0.0")),
        port=int(cfg.get("server.port", 8001) or 8001),
    )


if __name__ == "__main__":
    main()
