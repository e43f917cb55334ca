"""本地运行 worker（内嵌 beat），生产环境请使用 celery CLI 分别启动"""
from __future__ import annotations

from .config.celery import MAINTENANCE_QUEUE, RECONCILE_QUEUE, celery_app


def main() -> None:
    celery_app.worker_main(
        [
            "worker",
            "--beat",
            "--loglevel=INFO",
            f"--queues={RECONCILE_QUEUE},{MAINTENANCE_QUEUE}",
            "--hostname=payments@%h",
        ]
    )


if __name__ == "__main__":
    main()
