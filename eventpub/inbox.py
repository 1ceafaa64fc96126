import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import urlsplit

from pydantic import ValidationError

from .errors import UnprocessableActivity
from .models import Follower, InboundActivity
from .verifier import VerifiedRequest

logger = logging.getLogger(__name__)

AcceptScheduler = Callable[[str, Follower, Dict[str, Any]], Awaitable[Any]]


def _object_id(value: Union[str, Dict[str, Any], None]) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parts = urlsplit(value)
        return parts.scheme in ("http", "https") and bool(parts.hostname)
    except ValueError:
        return False


class InboxProcessor:
    """Applies verified inbound activities to follower state."""

    def __init__(self, store, on_follow: Optional[AcceptScheduler] = None):
        self.store = store
        self.on_follow = on_follow

    async def process(self, activity: Any, verified: VerifiedRequest) -> str:
        try:
            inbound = InboundActivity.model_validate(activity)
        except ValidationError as e:
            raise UnprocessableActivity(
                f"Malformed activity: {e.error_count()} errors"
            ) from e

        if inbound.type == "Follow":
            return await self._follow(inbound, activity, verified)
        if inbound.type == "Undo":
            return await self._undo(inbound, verified)
        logger.debug("Ignoring %s activity from %s", inbound.type, inbound.actor_id)
        return "ignored"

    def _check_sender(
        self, inbound: InboundActivity, verified: VerifiedRequest
    ) -> str:
        if not inbound.actor_id or inbound.actor_id != verified.actor_id:
            raise UnprocessableActivity(
                f"{inbound.type} from {inbound.actor_id} "
                f"was signed by {verified.actor_id}"
            )
        return inbound.actor_id

    async def _follow(
        self,
        inbound: InboundActivity,
        activity: Dict[str, Any],
        verified: VerifiedRequest,
    ) -> str:
        follower_id = self._check_sender(inbound, verified)
        target = _object_id(inbound.object)
        record = await self.store.get_actor(target) if target else None
        if record is None:
            logger.info("Follow from %s for unknown actor %s", follower_id, target)
            return "ignored"
        if not _is_http_url(verified.inbox):
            raise UnprocessableActivity(f"Actor {follower_id} has no usable inbox")

        document = verified.actor_document
        follower = Follower(
            actor_id=follower_id,
            inbox=verified.inbox,
            follow_id=inbound.id or "",
            name=document.get("name") or document.get("preferredUsername") or "",
        )
        if await self.store.add_follower(record.id, follower):
            logger.info("%s now follows %s", follower_id, record.id)

        if self.on_follow is not None:
            try:
                await self.on_follow(record.id, follower, activity)
            except Exception:
                logger.exception("Could not schedule Accept for %s", follower_id)
        return "followed"

    async def _undo(self, inbound: InboundActivity, verified: VerifiedRequest) -> str:
        undone = inbound.object
        if not isinstance(undone, dict) or undone.get("type") != "Follow":
            return "ignored"
        follower_id = self._check_sender(inbound, verified)
        target = _object_id(undone.get("object"))
        if not target:
            raise UnprocessableActivity("Undo of a Follow without a target")
        if await self.store.remove_follower(target, follower_id):
            logger.info("%s stopped following %s", follower_id, target)
        return "unfollowed"
