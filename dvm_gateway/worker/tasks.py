"""异步任务定义：按轮询策略刷新跟踪作业，中继失败时等待下一个轮询周期。"""

from __future__ import annotations

import asyncio
import logging

from dvm_gateway.application.container import build_reconciler_service, create_relay_client
from dvm_gateway.application.reconciler import JobRequestNotVisible
from dvm_gateway.config import get_settings
from dvm_gateway.domain.enums import PollScope
from dvm_gateway.domain.models import JobLifecycleState
from dvm_gateway.domain.polling import next_poll_delay
from dvm_gateway.infra.logging.context import bind_log_context
from dvm_gateway.infra.relay.client import RelayError
from dvm_gateway.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _refresh_job(job_id: str) -> JobLifecycleState:
    # 每次任务都在新的事件循环中运行，中继客户端随任务创建与关闭。
    async with create_relay_client() as relay:
        return await build_reconciler_service(relay).refresh_tracked_job(job_id)


async def _refresh_active_jobs() -> list[JobLifecycleState]:
    async with create_relay_client() as relay:
        return await build_reconciler_service(relay).refresh_active_jobs()


def _reschedule(task, job_id: str, countdown: float) -> None:
    # eager 模式下重新投递会同步递归执行，只依赖定时批量轮询。
    if task.app.conf.task_always_eager:
        return
    task.apply_async((job_id,), countdown=countdown)


@celery_app.task(bind=True, name="dvm_gateway.worker.tasks.poll_job_task")
def poll_job_task(self, job_id: str) -> str | None:
    """刷新单个跟踪作业；仍处于活跃状态时按轮询间隔重新投递自身。"""
    settings = get_settings()
    with bind_log_context(job_id=job_id, task_id=self.request.id):
        logger.info("job poll started", extra={"event": "job.poll.started"})
        try:
            state = asyncio.run(_refresh_job(job_id))
        except JobRequestNotVisible as exc:
            logger.info(
                "job request not yet visible on relays",
                extra={"event": "job.poll.request_pending", "external_service": "relay", "error": str(exc)},
            )
            _reschedule(self, job_id, settings.job_poll_seconds)
            return None
        except KeyError as exc:
            logger.warning(
                "job poll skipped",
                extra={"event": "job.poll.skipped", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return None
        except RelayError as exc:
            logger.warning(
                "job poll relay failure",
                extra={
                    "event": "job.poll.relay_failed",
                    "external_service": "relay",
                    "op": "refresh_tracked_job",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            # 不在本周期内重试，交给下一个轮询周期。
            _reschedule(self, job_id, settings.job_poll_seconds)
            return None

        delay = next_poll_delay(
            state.status,
            PollScope.job,
            job_interval=settings.job_poll_seconds,
            active_list_interval=settings.active_jobs_poll_seconds,
        )
        logger.info(
            "job poll finished",
            extra={
                "event": "job.poll.succeeded",
                "payload_preview": {
                    "status": state.status.value,
                    "results": len(state.results),
                    "feedback": len(state.feedback),
                    "next_poll_seconds": delay,
                },
            },
        )
        if delay is not None:
            _reschedule(self, job_id, delay)
        return state.status.value


@celery_app.task(bind=True, name="dvm_gateway.worker.tasks.poll_active_jobs_task")
def poll_active_jobs_task(self) -> int:
    """批量刷新全部活跃跟踪作业，兜底单作业轮询链断开的情况。"""
    with bind_log_context(task_id=self.request.id):
        logger.info("active jobs poll started", extra={"event": "jobs.poll.started"})
        try:
            states = asyncio.run(_refresh_active_jobs())
        except RelayError as exc:
            logger.warning(
                "active jobs poll relay failure",
                extra={
                    "event": "jobs.poll.relay_failed",
                    "external_service": "relay",
                    "op": "refresh_active_jobs",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return 0
        logger.info(
            "active jobs poll finished",
            extra={
                "event": "jobs.poll.succeeded",
                "payload_preview": {
                    "refreshed": len(states),
                    "still_active": sum(1 for state in states if state.is_active),
                },
            },
        )
        return len(states)
