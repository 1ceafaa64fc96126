import base64
import hmac
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from .errors import (
    ActorUnreachable,
    MissingSignature,
    SignatureInvalid,
)
from .negotiation import ACTIVITYPUB_CONTENT_TYPE
from .signatures import body_digest, build_signing_string, parse_signature_header

logger = logging.getLogger(__name__)


@dataclass
class VerifiedRequest:
    actor_document: Dict[str, Any]
    key_id: str

    @property
    def actor_id(self) -> Optional[str]:
        return self.actor_document.get("id")

    @property
    def inbox(self) -> Optional[str]:
        return self.actor_document.get("inbox") or (
            self.actor_document.get("endpoints") or {}
        ).get("sharedInbox")


class ActorDocumentCache:
    """Remote actor documents by key id, bounded in both age and size."""

    def __init__(self, ttl: float = 300.0, max_size: int = 512, clock=time.monotonic):
        self.ttl = ttl
        self.max_size = max_size
        self.clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Dict[str, Any]]]" = OrderedDict()

    def get(self, key_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key_id)
        if entry is None:
            return None
        stored_at, document = entry
        if self.clock() - stored_at > self.ttl:
            del self._entries[key_id]
            return None
        self._entries.move_to_end(key_id)
        return document

    def put(self, key_id: str, document: Dict[str, Any]) -> None:
        self._entries[key_id] = (self.clock(), document)
        self._entries.move_to_end(key_id)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def discard(self, key_id: str) -> None:
        self._entries.pop(key_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class InboxVerifier:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: Optional[ActorDocumentCache] = None,
        timeout: float = 10.0,
        user_agent: str = "eventpub/0.1",
    ):
        self.http_client = http_client
        self.cache = cache if cache is not None else ActorDocumentCache()
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch_actor(self, key_id: str) -> Dict[str, Any]:
        url = key_id.split("#", 1)[0]
        try:
            response = await self.http_client.get(
                url,
                headers={
                    "Accept": ACTIVITYPUB_CONTENT_TYPE,
                    "User-Agent": self.user_agent,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ActorUnreachable(f"Could not fetch actor {url}: {e}") from e
        if not isinstance(document, dict):
            raise ActorUnreachable(f"Actor {url} is not a JSON object")
        return document

    async def _actor_for(
        self, key_id: str, refresh: bool = False
    ) -> Tuple[Dict[str, Any], bool]:
        if not refresh:
            cached = self.cache.get(key_id)
            if cached is not None:
                return cached, True
        document = await self.fetch_actor(key_id)
        self.cache.put(key_id, document)
        return document, False

    async def verify(
        self, headers: Mapping[str, str], body: bytes, method: str, path: str
    ) -> VerifiedRequest:
        signature = headers.get("signature") or headers.get("Signature")
        if not signature:
            raise MissingSignature("No signature provided.")
        params = parse_signature_header(signature)
        key_id = params["keyId"]

        document, from_cache = await self._actor_for(key_id)
        try:
            self._check(document, params, headers, body, method, path)
        except SignatureInvalid:
            if not from_cache:
                raise
            # The remote side may have rotated its key since we cached it
            try:
                document, _ = await self._actor_for(key_id, refresh=True)
            except ActorUnreachable as e:
                raise SignatureInvalid(
                    f"Signature failed and {key_id} could not be refreshed"
                ) from e
            self._check(document, params, headers, body, method, path)
        return VerifiedRequest(actor_document=document, key_id=key_id)

    def _check_owner(self, document: Dict[str, Any], key_id: str) -> None:
        actor_id = key_id.split("#", 1)[0]
        public_key = document.get("publicKey")
        if document.get("id") != actor_id:
            raise SignatureInvalid(
                f"Actor document at {actor_id} claims to be {document.get('id')}"
            )
        if not isinstance(public_key, dict):
            raise SignatureInvalid(f"Actor {actor_id} has no public key")
        if public_key.get("id") != key_id or public_key.get("owner") != actor_id:
            raise SignatureInvalid(f"Key {key_id} is not owned by {actor_id}")

    def _check(self, document, params, headers, body, method, path) -> None:
        try:
            self._check_owner(document, params["keyId"])
            public_key_pem = document["publicKey"]["publicKeyPem"]
            header_names = params["headers"].split()
            signing_string = build_signing_string(header_names, headers, method, path)
            if "digest" in header_names:
                claimed = headers.get("digest") or headers.get("Digest") or ""
                if not hmac.compare_digest(claimed, body_digest(body or b"")):
                    raise SignatureInvalid("Digest does not match body")
            public_key = serialization.load_pem_public_key(public_key_pem.encode())
            public_key.verify(
                base64.b64decode(params["signature"]),
                signing_string.encode(),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except SignatureInvalid as e:
            logger.warning("Rejected signature from %s: %s", params.get("keyId"), e)
            raise
        except Exception as e:
            logger.warning("Rejected signature from %s: %s", params.get("keyId"), e)
            raise SignatureInvalid(f"Signature could not be verified: {e}") from e
