from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError

from .models import ActorRecord, Follower


class MotorStore:
    """Actor records in MongoDB, one document per actor keyed by its URL."""

    def __init__(self, database):
        self.actors = database["actors"]

    async def ensure_indexes(self) -> None:
        await self.actors.create_index("id", unique=True)

    async def create_actor(self, record: ActorRecord) -> bool:
        try:
            await self.actors.insert_one(record.model_dump())
        except DuplicateKeyError:
            return False
        return True

    async def get_actor(self, actor_id: str) -> Optional[ActorRecord]:
        document = await self.actors.find_one({"id": actor_id}, {"_id": 0})
        if document is None:
            return None
        return ActorRecord.model_validate(document)

    async def update_snapshots(
        self,
        actor_id: str,
        actor_document: Dict[str, Any],
        object_document: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> bool:
        changes: Dict[str, Any] = {"actor_document": actor_document}
        if object_document is not None:
            changes["object_document"] = object_document
        if name is not None:
            changes["name"] = name
        result = await self.actors.update_one({"id": actor_id}, {"$set": changes})
        return result.matched_count == 1

    async def add_follower(self, actor_id: str, follower: Follower) -> bool:
        # Conditional push keeps follower actor ids unique under concurrent Follows
        result = await self.actors.update_one(
            {"id": actor_id, "followers.actor_id": {"$ne": follower.actor_id}},
            {"$push": {"followers": follower.model_dump()}},
        )
        return result.modified_count == 1

    async def remove_follower(self, actor_id: str, follower_actor_id: str) -> bool:
        result = await self.actors.update_one(
            {"id": actor_id},
            {"$pull": {"followers": {"actor_id": follower_actor_id}}},
        )
        return result.modified_count == 1

    async def get_followers(self, actor_id: str) -> List[Follower]:
        document = await self.actors.find_one(
            {"id": actor_id}, {"_id": 0, "followers": 1}
        )
        if not document:
            return []
        return [Follower.model_validate(f) for f in document.get("followers", [])]

    async def delete_actor(self, actor_id: str) -> bool:
        result = await self.actors.delete_one({"id": actor_id})
        return result.deleted_count == 1


class MemoryStore:
    """
    Process-local stand-in for MotorStore, used when no MONGO_URL is
    configured and by the tests. Every method completes without awaiting,
    so each one is atomic with respect to other tasks on the loop.
    """

    def __init__(self):
        self._actors: Dict[str, ActorRecord] = {}

    async def ensure_indexes(self) -> None:
        return None

    async def create_actor(self, record: ActorRecord) -> bool:
        if record.id in self._actors:
            return False
        self._actors[record.id] = record.model_copy(deep=True)
        return True

    async def get_actor(self, actor_id: str) -> Optional[ActorRecord]:
        record = self._actors.get(actor_id)
        return record.model_copy(deep=True) if record else None

    async def update_snapshots(
        self,
        actor_id: str,
        actor_document: Dict[str, Any],
        object_document: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> bool:
        record = self._actors.get(actor_id)
        if record is None:
            return False
        record.actor_document = actor_document
        if object_document is not None:
            record.object_document = object_document
        if name is not None:
            record.name = name
        return True

    async def add_follower(self, actor_id: str, follower: Follower) -> bool:
        record = self._actors.get(actor_id)
        if record is None:
            return False
        if any(f.actor_id == follower.actor_id for f in record.followers):
            return False
        record.followers.append(follower.model_copy())
        return True

    async def remove_follower(self, actor_id: str, follower_actor_id: str) -> bool:
        record = self._actors.get(actor_id)
        if record is None:
            return False
        remaining = [f for f in record.followers if f.actor_id != follower_actor_id]
        changed = len(remaining) != len(record.followers)
        record.followers = remaining
        return changed

    async def get_followers(self, actor_id: str) -> List[Follower]:
        record = self._actors.get(actor_id)
        if record is None:
            return []
        return [f.model_copy() for f in record.followers]

    async def delete_actor(self, actor_id: str) -> bool:
        return self._actors.pop(actor_id, None) is not None


def connect_store(settings):
    if not settings.mongo_url:
        return MemoryStore()
    client = AsyncIOMotorClient(settings.mongo_url)
    return MotorStore(client[settings.mongo_db])
