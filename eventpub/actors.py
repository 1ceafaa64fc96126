import html
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .models import (
    AS_CONTEXT,
    AS_PUBLIC,
    SECURITY_CONTEXT,
    Activity,
    ActorRecord,
    Event,
    EventGroup,
)

ACTIVITY_KINDS = ("Create", "Update", "Delete", "Note")

Entity = Union[Event, EventGroup]


def new_guid() -> str:
    return secrets.token_hex(16)


def actor_url(kind: str, entity_id: str, domain: str) -> str:
    if kind == "group":
        return f"https://{domain}/group/{entity_id}"
    return f"https://{domain}/{entity_id}"


def _paragraphs(text: str) -> str:
    return "".join(
        f"<p>{html.escape(line)}</p>" for line in text.splitlines() if line.strip()
    )


def _summary(entity: Entity) -> str:
    summary = _paragraphs(entity.description)
    if isinstance(entity, Event):
        if entity.location:
            summary += f"<p>Location: {html.escape(entity.location)}</p>"
        if entity.start:
            summary += (
                f"<p>Starting {entity.start.strftime('%d %B %Y, %H:%M')}"
                f" ({html.escape(entity.timezone)})</p>"
            )
    return summary


def serialize_actor(
    entity: Entity, public_key: Dict[str, str], domain: str
) -> Dict[str, Any]:
    url = actor_url(entity.kind, entity.id, domain)
    document = {
        "@context": [AS_CONTEXT, SECURITY_CONTEXT],
        "id": url,
        "type": "Person",
        "preferredUsername": entity.id,
        "name": entity.name,
        "summary": _summary(entity),
        "url": entity.url or url,
        "inbox": f"https://{domain}/activitypub/inbox",
        "outbox": f"{url}/outbox",
        "followers": f"{url}/followers",
        "endpoints": {"sharedInbox": f"https://{domain}/activitypub/inbox"},
        "publicKey": dict(public_key),
    }
    if entity.image:
        document["icon"] = {
            "type": "Image",
            "mediaType": "image/jpg",
            "url": entity.image,
        }
    return document


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def serialize_event_object(event: Event, domain: str) -> Dict[str, Any]:
    url = actor_url(event.kind, event.id, domain)
    document = {
        "@context": AS_CONTEXT,
        "id": f"{url}/m/event",
        "type": "Event",
        "name": event.name,
        "content": event.description,
        "startTime": _isoformat(event.start),
        "endTime": _isoformat(event.end),
        "attributedTo": url,
        "url": event.url or url,
    }
    if event.location:
        document["location"] = {"type": "Place", "name": event.location}
    return {key: value for key, value in document.items() if value is not None}


def _actor_id(entity: Union[Entity, ActorRecord], domain: str) -> str:
    if isinstance(entity, ActorRecord):
        return entity.id
    return actor_url(entity.kind, entity.id, domain)


def build_note(
    entity: Union[Entity, ActorRecord], author: str, content: str, domain: str
) -> Dict[str, Any]:
    url = _actor_id(entity, domain)
    return {
        "@context": AS_CONTEXT,
        "id": f"{url}/m/{new_guid()}",
        "type": "Note",
        "name": f"Comment on {entity.name}",
        "attributedTo": url,
        "cc": AS_PUBLIC,
        "content": (
            f"<p>{html.escape(author)} commented: {html.escape(content)}</p>"
            f'<p><a href="{url}/">See the full conversation here.</a></p>'
        ),
    }


def build_activity(
    kind: str,
    entity: Union[Entity, ActorRecord],
    payload: Union[Dict[str, Any], str, None],
    domain: str,
) -> Activity:
    if kind not in ACTIVITY_KINDS:
        raise ValueError(f"Unsupported activity kind: {kind}")
    url = _actor_id(entity, domain)

    if kind == "Note":
        if not isinstance(payload, dict):
            raise ValueError("Note payload needs an author and content")
        payload = build_note(
            entity, payload.get("author", ""), payload.get("content", ""), domain
        )
        kind = "Create"
    elif kind == "Delete":
        # Stored snapshot only, never the live entity
        if payload is None and isinstance(entity, ActorRecord):
            payload = entity.actor_document
        if payload is None:
            raise ValueError("Delete needs the snapshot captured before removal")
    elif payload is None:
        raise ValueError(f"{kind} needs an object")

    return Activity(
        type=kind,
        id=f"https://{domain}/{new_guid()}",
        actor=url,
        object=payload,
        to=[AS_PUBLIC],
        cc=[f"{url}/followers"],
        published=datetime.now(timezone.utc),
    )


def build_accept(actor_id: str, follow: Dict[str, Any], domain: str) -> Activity:
    return Activity(
        type="Accept",
        id=f"https://{domain}/{new_guid()}",
        actor=actor_id,
        object=follow,
    )
