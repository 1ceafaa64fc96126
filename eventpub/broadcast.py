import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from .keystore import KeyStore, key_id_for
from .models import Activity, Follower
from .negotiation import ACTIVITYPUB_CONTENT_TYPE
from .signatures import signature_context, signature_header

logger = logging.getLogger(__name__)


@dataclass
class DeliveryAttempt:
    inbox: str
    actor_id: str
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DeliveryReport:
    activity_id: str
    attempts: List[DeliveryAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.ok)

    @property
    def failed(self) -> int:
        return sum(1 for attempt in self.attempts if not attempt.ok)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> List[DeliveryAttempt]:
        return [attempt for attempt in self.attempts if not attempt.ok]


class Broadcaster:
    """
    Signed fan-out of one activity to many inboxes.

    Every recipient gets its own request and signature, since the Host and
    Digest headers differ per inbox. Deliveries run concurrently, at most
    ``concurrency`` at a time, and one recipient failing or timing out never
    affects the others. Nothing is retried here.
    """

    def __init__(
        self,
        keystore: KeyStore,
        http_client: httpx.AsyncClient,
        timeout: float = 10.0,
        concurrency: int = 10,
        user_agent: str = "eventpub/0.1",
    ):
        self.keystore = keystore
        self.http_client = http_client
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.user_agent = user_agent

    async def deliver(self, activity: Activity, follower: Follower) -> DeliveryAttempt:
        body = json.dumps(activity.to_activitypub()).encode()
        try:
            context, headers = signature_context(
                key_id_for(activity.actor), follower.inbox, body
            )
            signature = await self.keystore.sign(
                activity.actor, context.signing_string.encode()
            )
            headers["signature"] = signature_header(context, signature)
            headers["content-type"] = ACTIVITYPUB_CONTENT_TYPE
            headers["user-agent"] = self.user_agent
            response = await self.http_client.post(
                follower.inbox, content=body, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException:
            logger.warning(
                "Delivery of %s to %s timed out", activity.id, follower.inbox
            )
            return DeliveryAttempt(
                follower.inbox, follower.actor_id, False, error="timeout"
            )
        except Exception as e:
            # Any per-recipient error is a failed attempt for that inbox only
            logger.warning(
                "Failed to deliver %s to %s: %s", activity.id, follower.inbox, e
            )
            return DeliveryAttempt(
                follower.inbox, follower.actor_id, False, error=str(e)
            )

        if not response.is_success:
            logger.warning(
                "Inbox %s rejected %s with HTTP %s",
                follower.inbox,
                activity.id,
                response.status_code,
            )
            return DeliveryAttempt(
                follower.inbox,
                follower.actor_id,
                False,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )
        return DeliveryAttempt(
            follower.inbox, follower.actor_id, True, status_code=response.status_code
        )

    async def broadcast(
        self, activity: Activity, followers: List[Follower]
    ) -> DeliveryReport:
        report = DeliveryReport(activity_id=activity.id)
        if not followers:
            return report
        # KeyMissing aborts the whole broadcast before anything is sent
        await self.keystore.ensure(activity.actor)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def attempt(follower: Follower) -> DeliveryAttempt:
            async with semaphore:
                return await self.deliver(activity, follower)

        report.attempts = list(await asyncio.gather(*(attempt(f) for f in followers)))
        logger.info(
            "Broadcast %s %s: %d delivered, %d failed",
            activity.type,
            activity.id,
            report.succeeded,
            report.failed,
        )
        return report
