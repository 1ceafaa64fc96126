import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .actors import (
    actor_url,
    build_accept,
    build_activity,
    serialize_actor,
    serialize_event_object,
)
from .broadcast import Broadcaster, DeliveryAttempt, DeliveryReport
from .config import Settings
from .errors import DeliveryFailed, FederationError
from .keystore import KeyStore, generate_key_pair, public_key_block
from .models import Activity, ActorRecord, Event, EventGroup, Follower

logger = logging.getLogger(__name__)

Entity = Union[Event, EventGroup]


class FederationService:
    """
    Federation hooks for the event/group CRUD layer.

    None of these methods raise on federation trouble: the CRUD action that
    triggered them has already happened (or must still happen), and remote
    servers being unavailable only means followers miss a notification.
    """

    def __init__(
        self,
        settings: Settings,
        store,
        keystore: KeyStore,
        broadcaster: Broadcaster,
    ):
        self.settings = settings
        self.store = store
        self.keystore = keystore
        self.broadcaster = broadcaster

    @property
    def domain(self) -> str:
        return self.settings.domain

    def actor_id(self, kind: str, entity_id: str) -> str:
        return actor_url(kind, entity_id, self.domain)

    async def _send(
        self, activity: Activity, followers: Optional[List[Follower]] = None
    ) -> DeliveryReport:
        if followers is None:
            followers = await self.store.get_followers(activity.actor)
        try:
            return await self.broadcaster.broadcast(activity, followers)
        except FederationError as e:
            logger.error("Broadcast of %s aborted: %s", activity.id, e)
            return DeliveryReport(
                activity_id=activity.id,
                attempts=[
                    DeliveryAttempt(f.inbox, f.actor_id, False, error=e.detail)
                    for f in followers
                ],
            )

    async def register(self, entity: Entity) -> ActorRecord:
        actor_id = self.actor_id(entity.kind, entity.id)
        existing = await self.store.get_actor(actor_id)
        if existing is not None:
            return existing

        private_pem, public_pem = generate_key_pair()
        record = ActorRecord(
            id=actor_id,
            entity_id=entity.id,
            kind=entity.kind,
            name=entity.name,
            public_key_pem=public_pem,
            private_key_pem=private_pem,
            actor_document=serialize_actor(
                entity, public_key_block(actor_id, public_pem), self.domain
            ),
            object_document=(
                serialize_event_object(entity, self.domain)
                if isinstance(entity, Event)
                else None
            ),
        )
        if not await self.store.create_actor(record):
            # Registered concurrently; the stored keys win
            return await self.store.get_actor(actor_id)
        logger.info("Registered actor %s", actor_id)
        return record

    async def announce_created(self, event: Event) -> List[DeliveryReport]:
        record = await self.register(event)
        reports = [
            await self._send(
                build_activity("Create", record, record.object_document, self.domain)
            )
        ]
        if event.group:
            group = await self.store.get_actor(self.actor_id("group", event.group))
            if group is not None:
                reports.append(
                    await self._send(
                        build_activity(
                            "Create", group, record.object_document, self.domain
                        )
                    )
                )
        return reports

    async def announce_updated(self, entity: Entity) -> List[DeliveryReport]:
        actor_id = self.actor_id(entity.kind, entity.id)
        record = await self.store.get_actor(actor_id)
        if record is None:
            await self.register(entity)
            return []

        try:
            public_key = await self.keystore.public_key_document(actor_id)
        except FederationError as e:
            logger.error("Not announcing update of %s: %s", actor_id, e)
            return []
        actor_document = serialize_actor(entity, public_key, self.domain)
        object_document = None
        if isinstance(entity, Event):
            object_document = serialize_event_object(entity, self.domain)
        await self.store.update_snapshots(
            actor_id, actor_document, object_document, name=entity.name
        )

        reports = [
            await self._send(
                build_activity("Update", record, actor_document, self.domain)
            )
        ]
        if object_document is not None:
            reports.append(
                await self._send(
                    build_activity("Update", record, object_document, self.domain)
                )
            )
        return reports

    async def announce_comment(
        self, kind: str, entity_id: str, author: str, content: str
    ) -> Optional[DeliveryReport]:
        record = await self.store.get_actor(self.actor_id(kind, entity_id))
        if record is None:
            return None
        activity = build_activity(
            "Note", record, {"author": author, "content": content}, self.domain
        )
        return await self._send(activity)

    async def retire(self, kind: str, entity_id: str) -> List[DeliveryReport]:
        """
        Tell followers an actor is gone, then drop its record.

        The record read here is the last-known snapshot; every Delete is
        built from it and each broadcast is awaited to completion before the
        next step, so the record is only removed once all signed notices have
        been attempted. The removal happens whatever the delivery outcome.
        """
        actor_id = self.actor_id(kind, entity_id)
        record = await self.store.get_actor(actor_id)
        if record is None:
            return []

        reports = []
        try:
            reports.append(
                await self._send(
                    build_activity(
                        "Delete", record, record.actor_document, self.domain
                    ),
                    record.followers,
                )
            )
            if record.object_document:
                reports.append(
                    await self._send(
                        build_activity(
                            "Delete", record, record.object_document, self.domain
                        ),
                        record.followers,
                    )
                )
        finally:
            await self.store.delete_actor(actor_id)
            self.keystore.forget(actor_id)
            logger.info("Retired actor %s", actor_id)
        return reports

    async def expire(
        self, entities: Iterable[Tuple[str, str]]
    ) -> Dict[str, List[DeliveryReport]]:
        results = {}
        for kind, entity_id in entities:
            actor_id = self.actor_id(kind, entity_id)
            results[actor_id] = await self.retire(kind, entity_id)
        return results

    async def remove_follower(
        self, kind: str, entity_id: str, follower_actor_id: str
    ) -> bool:
        removed = await self.store.remove_follower(
            self.actor_id(kind, entity_id), follower_actor_id
        )
        if removed:
            logger.info("Removed follower %s from %s", follower_actor_id, entity_id)
        return removed

    async def accept_follow(
        self, actor_id: str, follower: Follower, follow: Dict[str, Any]
    ) -> Optional[DeliveryAttempt]:
        record = await self.store.get_actor(actor_id)
        if record is None:
            logger.info("Not accepting follow of vanished actor %s", actor_id)
            return None

        attempt = await self.broadcaster.deliver(
            build_accept(actor_id, follow, self.domain), follower
        )
        if not attempt.ok:
            raise DeliveryFailed(
                f"Accept to {follower.inbox} failed: {attempt.error}"
            )

        # Put the event itself in the new follower's timeline
        if record.object_document:
            await self.broadcaster.deliver(
                build_activity("Create", record, record.object_document, self.domain),
                follower,
            )
        return attempt


def create_federation(settings: Settings, store, http_client) -> FederationService:
    keystore = KeyStore(store)
    broadcaster = Broadcaster(
        keystore,
        http_client,
        timeout=settings.delivery_timeout,
        concurrency=settings.broadcast_concurrency,
        user_agent=settings.user_agent,
    )
    return FederationService(settings, store, keystore, broadcaster)
