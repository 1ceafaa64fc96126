import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from eventpub import Settings, generate_key_pair
from main import create_app

INBOX_URL = "http://testserver/activitypub/inbox"


@pytest.fixture
def client(settings, store, http_client):
    app = create_app(settings, store=store, http_client=http_client)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def record(federation, event):
    return asyncio.run(federation.register(event))


@pytest.fixture
def ann(remote):
    return remote.add_actor("ann")


def follow_body(actor_id, target):
    return json.dumps(
        {
            "@context": "https://www.w3.org/ns/activitystreams",
            "id": f"{actor_id}/follows/1",
            "type": "Follow",
            "actor": actor_id,
            "object": target,
        }
    ).encode()


def followers(client, path):
    response = client.get(f"{path}/followers")
    assert response.status_code == 200
    return response.json()


# Inbox
def test_follow_through_inbox(client, remote, record, ann):
    body = follow_body(ann, record.id)
    response = client.post(
        "/activitypub/inbox", content=body, headers=remote.sign(ann, INBOX_URL, body)
    )
    assert response.status_code == 200
    assert response.json() == {"status": "followed"}

    collection = followers(client, "/picnic2030")
    assert collection["type"] == "OrderedCollection"
    assert collection["id"] == f"{record.id}/followers"
    assert collection["totalItems"] == 1
    assert collection["orderedItems"] == [ann]


def test_undo_through_inbox(client, remote, record, ann):
    follow = follow_body(ann, record.id)
    headers = remote.sign(ann, INBOX_URL, follow)
    client.post("/activitypub/inbox", content=follow, headers=headers)
    undo = json.dumps(
        {"type": "Undo", "actor": ann, "object": json.loads(follow)}
    ).encode()
    response = client.post(
        "/activitypub/inbox", content=undo, headers=remote.sign(ann, INBOX_URL, undo)
    )
    assert response.status_code == 200
    assert response.json() == {"status": "unfollowed"}
    assert followers(client, "/picnic2030")["totalItems"] == 0


def test_wrong_signature_is_rejected(client, remote, record, ann):
    body = follow_body(ann, record.id)
    private_pem, _ = generate_key_pair()
    headers = remote.sign(ann, INBOX_URL, body, private_pem=private_pem)

    response = client.post("/activitypub/inbox", content=body, headers=headers)

    assert response.status_code == 401
    assert followers(client, "/picnic2030")["totalItems"] == 0


def test_missing_signature_is_rejected(client, record, ann):
    response = client.post(
        "/activitypub/inbox", content=follow_body(ann, record.id)
    )
    assert response.status_code == 401
    assert "detail" in response.json()


def test_unreachable_signer(client, remote, record):
    ghost = "https://remote.example/users/ghost"
    body = follow_body(ghost, record.id)
    response = client.post(
        "/activitypub/inbox", content=body, headers=remote.sign(ghost, INBOX_URL, body)
    )
    assert response.status_code == 500


def test_signed_garbage_is_unprocessable(client, remote, ann):
    body = b"not json"
    response = client.post(
        "/activitypub/inbox", content=body, headers=remote.sign(ann, INBOX_URL, body)
    )
    assert response.status_code == 422


def test_follow_for_someone_else_is_unprocessable(client, remote, record, ann):
    eve = remote.add_actor("eve")
    body = follow_body(eve, record.id)
    response = client.post(
        "/activitypub/inbox", content=body, headers=remote.sign(ann, INBOX_URL, body)
    )
    assert response.status_code == 422
    assert followers(client, "/picnic2030")["totalItems"] == 0


def test_inbox_disabled_when_not_federated(store, http_client):
    app = create_app(
        Settings(domain="events.test", is_federated=False),
        store=store,
        http_client=http_client,
    )
    with TestClient(app) as client:
        response = client.post("/activitypub/inbox", content=b"{}")
    assert response.status_code == 404


# Actors
def test_actor_as_activitypub(client, record):
    response = client.get(
        "/picnic2030", headers={"Accept": "application/activity+json"}
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/activity+json"
    assert response.json() == record.actor_document


def test_actor_as_html(client, record):
    response = client.get("/picnic2030", headers={"Accept": "text/html"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.headers["x-robots-tag"] == "noindex"
    assert "Summer picnic" in response.text


def test_group_actor(client, federation, group):
    record = asyncio.run(federation.register(group))
    response = client.get(
        "/group/walkers", headers={"Accept": "application/ld+json"}
    )
    assert response.status_code == 200
    assert response.json()["id"] == record.id
    assert followers(client, "/group/walkers")["totalItems"] == 0


@pytest.mark.parametrize("path", ["/nope", "/group/nope", "/nope/followers"])
def test_unknown_actor(client, path):
    response = client.get(path, headers={"Accept": "application/activity+json"})
    assert response.status_code == 404


# WebFinger
def test_webfinger(client, record):
    response = client.get(
        "/.well-known/webfinger", params={"resource": "acct:picnic2030@events.test"}
    )
    assert response.status_code == 200
    assert response.json()["subject"] == "acct:picnic2030@events.test"
    assert response.json()["links"][0]["href"] == record.id


@pytest.mark.parametrize(
    "resource",
    ["acct:picnic2030@elsewhere.example", "acct:nope@events.test", "picnic2030"],
)
def test_webfinger_not_found(client, record, resource):
    response = client.get("/.well-known/webfinger", params={"resource": resource})
    assert response.status_code == 404


if __name__ == "__main__":
    pytest.main()
