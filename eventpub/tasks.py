import logging
from typing import Any, Dict

import httpx
from taskiq import (
    InMemoryBroker,
    SimpleRetryMiddleware,
    TaskiqDepends,
    TaskiqEvents,
    TaskiqState,
)
from taskiq_redis import ListQueueBroker

from .config import Settings
from .models import Follower
from .service import create_federation
from .store import connect_store

logger = logging.getLogger(__name__)

REDIS_URL = Settings.from_env().redis_url

if REDIS_URL:
    broker = ListQueueBroker(REDIS_URL).with_middlewares(
        SimpleRetryMiddleware(default_retry_count=3),
    )
else:
    broker = InMemoryBroker()


@broker.on_event(TaskiqEvents.WORKER_STARTUP)
async def worker_startup(state: TaskiqState) -> None:
    if getattr(state, "federation", None) is not None:
        # Set by the web app when the broker runs in-process
        return
    settings = Settings.from_env()
    store = connect_store(settings)
    await store.ensure_indexes()
    state.worker_client = httpx.AsyncClient(timeout=settings.delivery_timeout)
    state.federation = create_federation(settings, store, state.worker_client)
    logger.info("Federation worker ready for %s", settings.domain)


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def worker_shutdown(state: TaskiqState) -> None:
    client = getattr(state, "worker_client", None)
    if client is not None:
        await client.aclose()


@broker.task(retry_on_error=True, max_retries=5)
async def send_follow_accept(
    actor_id: str,
    follower: Dict[str, Any],
    follow: Dict[str, Any],
    state: TaskiqState = TaskiqDepends(),
) -> bool:
    service = state.federation
    attempt = await service.accept_follow(
        actor_id, Follower.model_validate(follower), follow
    )
    return attempt is not None and attempt.ok


async def schedule_follow_accept(
    actor_id: str, follower: Follower, follow: Dict[str, Any]
) -> None:
    await send_follow_accept.kiq(actor_id, follower.model_dump(), follow)
    logger.debug("Queued Accept of %s for %s", follower.actor_id, actor_id)
