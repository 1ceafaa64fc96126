import asyncio

import pytest

from eventpub.errors import UnprocessableActivity
from eventpub.inbox import InboxProcessor
from eventpub.verifier import VerifiedRequest

ANN = "https://remote.example/users/ann"


def verified_as(actor_id, inbox=True):
    document = {"id": actor_id, "type": "Person", "name": "Ann"}
    if inbox:
        document["inbox"] = f"{actor_id}/inbox"
    return VerifiedRequest(actor_document=document, key_id=f"{actor_id}#main-key")


def follow(target, actor=ANN):
    return {
        "id": f"{actor}/follows/1",
        "type": "Follow",
        "actor": actor,
        "object": target,
    }


@pytest.fixture
def scheduled():
    return []


@pytest.fixture
def processor(store, scheduled):
    async def on_follow(actor_id, follower, activity):
        scheduled.append((actor_id, follower, activity))

    return InboxProcessor(store, on_follow=on_follow)


@pytest.fixture
def actor_id(federation, event):
    return asyncio.run(federation.register(event)).id


def test_follow_adds_follower_once(processor, store, scheduled, actor_id):
    async def follow_twice():
        first = await processor.process(follow(actor_id), verified_as(ANN))
        second = await processor.process(follow(actor_id), verified_as(ANN))
        return first, second, await store.get_followers(actor_id)

    first, second, followers = asyncio.run(follow_twice())

    assert first == second == "followed"
    assert [f.actor_id for f in followers] == [ANN]
    assert followers[0].inbox == f"{ANN}/inbox"
    assert followers[0].name == "Ann"
    assert followers[0].follow_id == f"{ANN}/follows/1"
    assert len(scheduled) == 2
    assert scheduled[0][0] == actor_id
    assert scheduled[0][2]["type"] == "Follow"


def test_concurrent_follows_stay_unique(processor, store, actor_id):
    async def race():
        await asyncio.gather(
            *(processor.process(follow(actor_id), verified_as(ANN)) for _ in range(5))
        )
        return await store.get_followers(actor_id)

    assert len(asyncio.run(race())) == 1


def test_follow_with_embedded_object(processor, store, actor_id):
    activity = follow({"id": actor_id, "type": "Person"})
    assert asyncio.run(processor.process(activity, verified_as(ANN))) == "followed"
    assert len(asyncio.run(store.get_followers(actor_id))) == 1


def test_follow_unknown_actor_is_ignored(processor, scheduled):
    outcome = asyncio.run(
        processor.process(follow("https://events.test/nope"), verified_as(ANN))
    )
    assert outcome == "ignored"
    assert scheduled == []


def test_follow_signed_by_someone_else(processor, store, actor_id):
    with pytest.raises(UnprocessableActivity):
        asyncio.run(
            processor.process(
                follow(actor_id), verified_as("https://remote.example/users/eve")
            )
        )
    assert asyncio.run(store.get_followers(actor_id)) == []


def test_follow_from_actor_without_inbox(processor, actor_id):
    with pytest.raises(UnprocessableActivity):
        asyncio.run(processor.process(follow(actor_id), verified_as(ANN, inbox=False)))


def test_scheduler_failure_keeps_follower(store, actor_id):
    async def broken(actor_id, follower, activity):
        raise RuntimeError("queue down")

    processor = InboxProcessor(store, on_follow=broken)
    outcome = asyncio.run(processor.process(follow(actor_id), verified_as(ANN)))

    assert outcome == "followed"
    assert len(asyncio.run(store.get_followers(actor_id))) == 1


def test_undo_follow(processor, store, actor_id):
    undo = {
        "id": f"{ANN}/undo/1",
        "type": "Undo",
        "actor": ANN,
        "object": follow(actor_id),
    }

    async def follow_then_undo():
        await processor.process(follow(actor_id), verified_as(ANN))
        first = await processor.process(undo, verified_as(ANN))
        second = await processor.process(undo, verified_as(ANN))
        return first, second, await store.get_followers(actor_id)

    first, second, followers = asyncio.run(follow_then_undo())

    assert first == second == "unfollowed"
    assert followers == []


def test_undo_of_non_follow_is_ignored(processor):
    undo = {"type": "Undo", "actor": ANN, "object": {"type": "Like", "object": "x"}}
    assert asyncio.run(processor.process(undo, verified_as(ANN))) == "ignored"


def test_other_activities_are_ignored(processor, actor_id):
    like = {"type": "Like", "actor": ANN, "object": actor_id}
    assert asyncio.run(processor.process(like, verified_as(ANN))) == "ignored"


@pytest.mark.parametrize(
    "activity",
    [
        {},
        {"type": "Follow"},
        {"type": "Follow", "actor": ANN},
        ["not", "an", "object"],
    ],
)
def test_malformed_activity(processor, activity):
    with pytest.raises(UnprocessableActivity):
        asyncio.run(processor.process(activity, verified_as(ANN)))


@pytest.mark.parametrize(
    "inbox", ["https://[evil/inbox", "ftp://remote.example/inbox", "/inbox", 42]
)
def test_follow_from_actor_with_unusable_inbox(
    processor, store, scheduled, actor_id, inbox
):
    verified = verified_as(ANN)
    verified.actor_document["inbox"] = inbox

    with pytest.raises(UnprocessableActivity):
        asyncio.run(processor.process(follow(actor_id), verified))
    assert asyncio.run(store.get_followers(actor_id)) == []
    assert scheduled == []
