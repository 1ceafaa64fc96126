from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

AS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"
AS_PUBLIC = "https://www.w3.org/ns/activitystreams#Public"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PublicKey(BaseModel):
    id: str
    owner: str
    publicKeyPem: str


class Follower(BaseModel):
    actor_id: str
    inbox: str
    follow_id: str = ""
    name: str = ""


class ActorRecord(BaseModel):
    id: str
    entity_id: str
    kind: str
    name: str
    public_key_pem: str
    private_key_pem: str
    actor_document: Dict[str, Any]
    object_document: Optional[Dict[str, Any]] = None
    followers: List[Follower] = []
    created_at: datetime = Field(default_factory=_utcnow)


class Activity(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    context: Union[str, List[Any]] = Field(default=AS_CONTEXT, alias="@context")
    type: str
    id: str
    actor: str
    object: Union[Dict[str, Any], str]
    to: List[str] = []
    cc: List[str] = []
    published: Optional[datetime] = None

    def to_activitypub(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        # Empty addressing lists are noise on the wire
        for key in ("to", "cc"):
            if not data.get(key):
                data.pop(key, None)
        return data


class InboundActivity(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    actor: Union[str, Dict[str, Any]]
    object: Union[str, Dict[str, Any]]
    id: Optional[str] = None

    @property
    def actor_id(self) -> Optional[str]:
        if isinstance(self.actor, dict):
            return self.actor.get("id")
        return self.actor


class OrderedCollection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    context: str = Field(default=AS_CONTEXT, alias="@context")
    type: str = "OrderedCollection"
    id: str
    totalItems: int
    orderedItems: List[str]


class EventGroup(BaseModel):
    id: str
    name: str
    description: str = ""
    url: Optional[str] = None
    image: Optional[str] = None

    kind: ClassVar[str] = "group"


class Event(BaseModel):
    id: str
    name: str
    description: str = ""
    location: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timezone: str = "UTC"
    url: Optional[str] = None
    image: Optional[str] = None
    group: Optional[str] = None

    kind: ClassVar[str] = "event"
