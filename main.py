import json
import logging
from contextlib import asynccontextmanager
from html import escape
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse

from eventpub import (
    FederationError,
    InboxProcessor,
    InboxVerifier,
    Settings,
    UnprocessableActivity,
    connect_store,
    create_federation,
    wants_federated_representation,
)
from eventpub.actors import actor_url
from eventpub.models import OrderedCollection
from eventpub.negotiation import ACTIVITYPUB_CONTENT_TYPE
from eventpub.tasks import broker, schedule_follow_accept
from eventpub.verifier import ActorDocumentCache

logger = logging.getLogger("eventpub")

HTML_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<h1>{name}</h1>
{summary}
<p><a href="{url}">{url}</a></p>
</body>
</html>
"""


def create_app(
    settings: Optional[Settings] = None,
    store=None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store if store is not None else connect_store(settings)
        await app.state.store.ensure_indexes()
        client = http_client or httpx.AsyncClient(timeout=settings.delivery_timeout)

        app.state.federation = create_federation(settings, app.state.store, client)
        app.state.verifier = InboxVerifier(
            client,
            cache=ActorDocumentCache(settings.key_cache_ttl, settings.key_cache_size),
            timeout=settings.key_fetch_timeout,
            user_agent=settings.user_agent,
        )
        app.state.processor = InboxProcessor(
            app.state.store, on_follow=schedule_follow_accept
        )

        broker.state.federation = app.state.federation
        if not broker.is_worker_process:
            await broker.startup()
        logger.info(
            "Serving %s (federated: %s)", settings.domain, settings.is_federated
        )
        yield
        if not broker.is_worker_process:
            await broker.shutdown()
        if http_client is None:
            await client.aclose()

    app = FastAPI(title=settings.site_name, lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(FederationError)
    async def federation_error_handler(request: Request, exc: FederationError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    async def actor_or_404(kind: str, entity_id: str):
        record = await app.state.store.get_actor(
            actor_url(kind, entity_id, settings.domain)
        )
        if record is None:
            raise HTTPException(status_code=404, detail="Actor not found")
        return record

    async def negotiated_actor(request: Request, kind: str, entity_id: str):
        record = await actor_or_404(kind, entity_id)
        headers = {"Vary": "Accept"}
        if settings.is_federated and wants_federated_representation(request.headers):
            return JSONResponse(
                content=record.actor_document,
                media_type=ACTIVITYPUB_CONTENT_TYPE,
                headers=headers,
            )
        headers["X-Robots-Tag"] = "noindex"
        page = HTML_PAGE.format(
            title=escape(f"{record.name} - {settings.site_name}"),
            name=escape(record.name),
            summary=record.actor_document.get("summary", ""),
            url=escape(record.actor_document.get("url", record.id)),
        )
        return HTMLResponse(content=page, headers=headers)

    async def followers_collection(kind: str, entity_id: str):
        record = await actor_or_404(kind, entity_id)
        collection = OrderedCollection(
            id=f"{record.id}/followers",
            totalItems=len(record.followers),
            orderedItems=[f.actor_id for f in record.followers],
        )
        return JSONResponse(
            content=collection.model_dump(by_alias=True),
            media_type=ACTIVITYPUB_CONTENT_TYPE,
        )

    @app.post("/activitypub/inbox")
    async def inbox(request: Request):
        if not settings.is_federated:
            raise HTTPException(status_code=404, detail="Not Found")
        body = await request.body()
        path = request.url.path
        if request.url.query:
            path += f"?{request.url.query}"

        verified = await app.state.verifier.verify(
            request.headers, body, request.method, path
        )
        try:
            activity = json.loads(body)
        except ValueError as e:
            raise UnprocessableActivity("Request body is not JSON") from e
        outcome = await app.state.processor.process(activity, verified)
        return {"status": outcome}

    @app.get("/.well-known/webfinger")
    async def webfinger(resource: str):
        if not settings.is_federated:
            raise HTTPException(status_code=404, detail="Not Found")
        username, _, domain = resource.removeprefix("acct:").rpartition("@")
        if not username or domain != settings.domain:
            raise HTTPException(status_code=404, detail="User not found")

        for kind in ("event", "group"):
            record = await app.state.store.get_actor(
                actor_url(kind, username, settings.domain)
            )
            if record is not None:
                break
        else:
            raise HTTPException(status_code=404, detail="User not found")

        return JSONResponse(
            content={
                "subject": f"acct:{username}@{settings.domain}",
                "links": [
                    {
                        "rel": "self",
                        "type": ACTIVITYPUB_CONTENT_TYPE,
                        "href": record.id,
                    }
                ],
            },
            media_type="application/jrd+json",
        )

    @app.get("/group/{group_id}/followers")
    async def get_group_followers(group_id: str):
        return await followers_collection("group", group_id)

    @app.get("/group/{group_id}")
    async def get_group(group_id: str, request: Request):
        return await negotiated_actor(request, "group", group_id)

    @app.get("/{event_id}/followers")
    async def get_event_followers(event_id: str):
        return await followers_collection("event", event_id)

    @app.get("/{event_id}")
    async def get_event(event_id: str, request: Request):
        return await negotiated_actor(request, "event", event_id)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
