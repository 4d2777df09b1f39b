"""Celery 应用配置：定义队列路由、活跃作业定时轮询与进程级资源初始化/回收。"""

from __future__ import annotations

import logging
import sys

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from dvm_gateway.application.container import reset_container
from dvm_gateway.config import get_settings
from dvm_gateway.infra.db.session import init_db
from dvm_gateway.infra.logging.setup import configure_logging, shutdown_logging

settings = get_settings()


def _detect_process_role() -> str | None:
    argv = " ".join(sys.argv[1:]).lower()
    if "beat" in argv:
        return "beat"
    if "worker" in argv:
        return "worker"
    return None


process_role = _detect_process_role()
logger = logging.getLogger(__name__)
if process_role:
    configure_logging(settings, process_role=process_role)

celery_app = Celery("dvm_gateway", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    imports=("dvm_gateway.worker.tasks",),
    task_default_queue="default",
    task_routes={
        "dvm_gateway.worker.tasks.poll_job_task": {"queue": "default"},
        "dvm_gateway.worker.tasks.poll_active_jobs_task": {"queue": "default"},
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_connection_retry_on_startup=True,
    # 单次轮询只包含有限次中继查询，硬超时留出充足余量。
    task_soft_time_limit=max(60, int(settings.relay_request_timeout_seconds * 3)),
    task_time_limit=max(90, int(settings.relay_request_timeout_seconds * 6)),
    task_track_started=True,
    task_ignore_result=True,
    beat_schedule={
        "poll-active-jobs": {
            "task": "dvm_gateway.worker.tasks.poll_active_jobs_task",
            "schedule": settings.active_jobs_poll_seconds,
        },
    },
)

if settings.celery_task_always_eager:
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=True)

if process_role:
    logger.info(
        "celery app configured",
        extra={
            "event": "celery.config.loaded",
            "external_service": "redis",
            "op": process_role,
            "payload_preview": {
                "broker": settings.redis_url,
                "always_eager": settings.celery_task_always_eager,
                "active_jobs_poll_seconds": settings.active_jobs_poll_seconds,
            },
        },
    )


@worker_process_init.connect
def _init_worker_resources(**_: object) -> None:
    """Worker 子进程启动时确保表结构存在。"""
    init_db()


@worker_process_shutdown.connect
def _shutdown_worker_resources(**_: object) -> None:
    """Worker 进程关闭时释放共享资源。"""
    reset_container()
    shutdown_logging()
