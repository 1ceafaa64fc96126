import json
import os
from datetime import datetime, timezone

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

# Keep the broker in-process and the store in memory
os.environ["REDIS_URL"] = ""
os.environ["MONGO_URL"] = ""

from eventpub import (  # noqa: E402
    MemoryStore,
    Settings,
    create_federation,
    generate_key_pair,
)
from eventpub.models import Event, EventGroup  # noqa: E402
from eventpub.signatures import signature_context, signature_header  # noqa: E402

REMOTE = "https://remote.example"
DOMAIN = "events.test"


def sign_request(private_pem, key_id, url, body, method="POST"):
    key = serialization.load_pem_private_key(private_pem.encode(), password=None)
    context, headers = signature_context(key_id, url, body, method=method)
    signature = key.sign(
        context.signing_string.encode(), padding.PKCS1v15(), hashes.SHA256()
    )
    headers["signature"] = signature_header(context, signature)
    return headers


class RemoteFediverse:
    """Other servers, as seen through an httpx MockTransport."""

    def __init__(self):
        self.private_pem, self.public_pem = generate_key_pair()
        self.actors = {}
        self.fetches = {}
        self.failing = {}
        self.log = []
        self.received = []

    def add_actor(self, name, public_pem=None, inbox=True):
        actor_id = f"{REMOTE}/users/{name}"
        document = {
            "@context": "https://www.w3.org/ns/activitystreams",
            "id": actor_id,
            "type": "Person",
            "name": name.title(),
            "preferredUsername": name,
            "publicKey": {
                "id": f"{actor_id}#main-key",
                "owner": actor_id,
                "publicKeyPem": public_pem or self.public_pem,
            },
        }
        if inbox:
            document["inbox"] = f"{actor_id}/inbox"
        self.actors[actor_id] = document
        return actor_id

    def sign(self, actor_id, url, body, private_pem=None):
        return sign_request(
            private_pem or self.private_pem, f"{actor_id}#main-key", url, body
        )

    def delivered(self, inbox):
        return [entry[1] for entry in self.received if entry[0] == inbox]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "GET":
            self.fetches[url] = self.fetches.get(url, 0) + 1
            document = self.actors.get(url)
            if document is None:
                return httpx.Response(404, json={"error": "Not Found"})
            return httpx.Response(200, json=document)

        behaviour = self.failing.get(url)
        if behaviour == "timeout":
            self.log.append(("timeout", url))
            raise httpx.ConnectTimeout("timed out", request=request)
        if isinstance(behaviour, int):
            self.log.append(("rejected", url))
            return httpx.Response(behaviour)

        activity = json.loads(request.content)
        self.log.append((activity["type"], url))
        self.received.append((url, activity, dict(request.headers), request.content))
        return httpx.Response(202)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def settings():
    return Settings(domain=DOMAIN, site_name="Test events", delivery_timeout=2.0)


@pytest.fixture
def remote():
    return RemoteFediverse()


@pytest.fixture
def http_client(remote):
    return remote.client()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def federation(settings, store, http_client):
    return create_federation(settings, store, http_client)


@pytest.fixture
def event():
    return Event(
        id="picnic2030",
        name="Summer picnic",
        description="Bring food.\nBring friends.",
        location="The park",
        start=datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc),
        end=datetime(2030, 6, 1, 16, 0, tzinfo=timezone.utc),
        timezone="Europe/London",
        group="walkers",
    )


@pytest.fixture
def group():
    return EventGroup(id="walkers", name="Sunday walkers", description="We walk.")
