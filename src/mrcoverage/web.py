import hmac
import logging
from typing import Optional, Union

import aiohttp
from prometheus_client import core
from prometheus_client.exposition import CONTENT_TYPE_LATEST, generate_latest
from sanic import Request, Sanic, response
from sanic.log import logger
import sanic.log

from mrcoverage import config
from mrcoverage.correlation import CorrelationEngine, EventDispatcher
from mrcoverage.errors import DecodeError, StoreError, UnsupportedEvent
from mrcoverage.events import Event, decode_event, event_kind, load_payload
from mrcoverage.gitlab.api import API
from mrcoverage.logger import LOG_FORMAT, get_log_handlers
from mrcoverage.metric import (
    error_counter,
    request_counter,
    webhook_counter,
    webhook_skipped_counter,
)
from mrcoverage.storage import get_store

logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)


def verify_token(secret: Optional[str], token: Optional[str]) -> bool:
    if not secret:
        return True
    if token is None:
        return False
    return hmac.compare_digest(secret.encode(), token.encode())


async def process_gitlab_event(
    app, kind: Optional[str], body: Union[bytes, str]
) -> Optional[Event]:
    """Decode a webhook and hand it to the dispatcher without waiting for it.

    Returns the dispatched event, or ``None`` for event kinds we do not
    handle. Malformed payloads raise :class:`DecodeError`.
    """
    payload = load_payload(body)
    kind = event_kind(kind, payload)
    webhook_counter.labels(event=kind or "unknown").inc()

    try:
        event = decode_event(kind, payload)
    except UnsupportedEvent:
        logger.debug("Skipping event type %s", kind)
        webhook_skipped_counter.labels(
            event=kind or "unknown", reason="unsupported"
        ).inc()
        return None

    try:
        app.ctx.store.record_event(kind, payload)
    except StoreError as e:
        error_counter.labels(context="event_log").inc()
        logger.warning("Unable to record %s in event log: %s", event, e)

    logger.debug("Dispatching %s", event)
    app.ctx.dispatcher.dispatch(event)
    return event


def create_app():
    app = Sanic("mrcoverage")
    app.update_config(config)

    logging.getLogger().setLevel(config.OVERRIDE_LOGGING)

    sanic.log.logger.handlers = []
    get_log_handlers(sanic.log.logger)

    @app.listener("before_server_start")
    async def init(app):
        logger.debug("Creating aiohttp session")
        app.ctx.aiohttp_session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=app.config.GITLAB_REQUEST_TIMEOUT)
        )
        app.ctx.store = get_store()
        api = API(
            app.ctx.aiohttp_session,
            app.config.GITLAB_URL,
            token=app.config.GITLAB_TOKEN,
        )
        engine = CorrelationEngine(app.ctx.store, api, dry_run=app.config.DRY_RUN)
        app.ctx.dispatcher = EventDispatcher(engine)

    @app.listener("after_server_stop")
    async def teardown(app):
        await app.ctx.dispatcher.shutdown()
        await app.ctx.aiohttp_session.close()
        app.ctx.store.close()

    @app.on_request
    async def on_request(request: Request):
        if request.path == "/metrics":
            return
        request_counter.labels(path=request.path).inc()

    @app.get("/status")
    async def status(request):
        logger.debug("status check")
        return response.text("ok")

    @app.route("/webhook", methods=["POST"])
    async def gitlab(request):
        logger.debug("Webhook received")

        if not verify_token(
            app.config.GITLAB_WEBHOOK_SECRET, request.headers.get("X-Gitlab-Token")
        ):
            logger.warning("Webhook with invalid token from %s", request.remote_addr)
            return response.text("invalid token", status=401)

        try:
            await process_gitlab_event(
                app, request.headers.get("X-Gitlab-Event"), request.body
            )
        except DecodeError as e:
            error_counter.labels(context=e.context).inc()
            logger.error("Webhook cannot be decoded: %s", e)
            return response.text("cannot decode webhook", status=400)

        return response.empty(200)

    @app.get("/metrics")
    async def metrics(request):
        data = generate_latest(core.REGISTRY)
        return response.raw(data, content_type=CONTENT_TYPE_LATEST)

    return app
