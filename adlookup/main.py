from __future__ import annotations

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from sqlalchemy.engine import Engine

from .ad import ADClient, Identity
from .db import Base, make_engine, make_sessionmaker
from .dispatcher import Dispatcher
from .env_settings import EnvSettings, get_env
from .errors import DirectoryUnavailable
from .housekeeping import Housekeeper
from .log_config import setup_logging
from .repo import UsernameIndex
from .services import SearchCoordinator, ad_cfg_from_env
from .sessions import SessionRegistry

log = logging.getLogger(__name__)

# Upper bound for one outbound frame handed over from a worker thread.
_SEND_TIMEOUT_S = 10


@dataclass
class Services:
    dispatcher: Dispatcher
    housekeeper: Optional[Housekeeper] = None
    engine: Optional[Engine] = None


def _ad_not_configured(username: str, password: str) -> Identity:
    raise DirectoryUnavailable("AD is not configured")


def build_services(env: EnvSettings) -> Services:
    engine = make_engine()
    Base.metadata.create_all(bind=engine)
    coordinator = SearchCoordinator(
        UsernameIndex(make_sessionmaker(engine)),
        page_size=env.results_per_page,
        max_pages=env.max_pages,
        timeout_ms=env.suggestion_timeout_ms,
    )

    cfg = ad_cfg_from_env(env)
    if cfg is None:
        log.warning("LDAP_URL / LDAP_BASE_DN / LDAP_SERVICE_USER not set, every login will fail")
        client = None
        authenticate = _ad_not_configured
    else:
        client = ADClient(cfg)
        authenticate = client.authenticate
        ok, res = client.service_bind()
        if not ok:
            log.warning("Service bind to %s failed: %s", cfg.url, res.get("description", "unknown error"))

    registry = SessionRegistry(authenticate, timeout_s=env.session_timeout_s)
    dispatcher = Dispatcher(
        registry,
        client,
        coordinator,
        pwd_duration_days=env.pwd_duration_days,
        mail_domain=env.mail_domain,
        executor=ThreadPoolExecutor(max_workers=max(1, env.worker_count), thread_name_prefix="adlookup"),
    )
    housekeeper = Housekeeper(registry, dispatcher.broadcast_keepalive, env.session_timeout_s / 2)
    return Services(dispatcher=dispatcher, housekeeper=housekeeper, engine=engine)


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = app.state.services
        if svc is None:
            env = get_env()
            setup_logging(env.log_level, env.log_retention_days)
            svc = app.state.services = build_services(env)
        if svc.housekeeper is not None:
            svc.housekeeper.start()
        log.info("AD Lookup started")
        try:
            yield
        finally:
            if svc.housekeeper is not None:
                svc.housekeeper.stop()
            # workers may still be waiting on the loop to deliver a frame
            await asyncio.to_thread(svc.dispatcher.shutdown, True)
            if svc.engine is not None:
                svc.engine.dispose()
            log.info("AD Lookup stopped")

    app = FastAPI(title="AD Lookup", lifespan=lifespan)
    app.state.services = services

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.websocket("/actions")
    async def actions(ws: WebSocket):
        dispatcher: Dispatcher = app.state.services.dispatcher
        await ws.accept()
        loop = asyncio.get_running_loop()
        channel_id = str(uuid.uuid4())

        def send(message: dict) -> None:
            # Called from worker threads; the socket belongs to the event loop.
            asyncio.run_coroutine_threadsafe(ws.send_json(message), loop).result(_SEND_TIMEOUT_S)

        dispatcher.open(channel_id, send)
        log.debug("Channel %s opened", channel_id)
        try:
            while True:
                text = await ws.receive_text()
                dispatcher.handle(channel_id, text)
        except WebSocketDisconnect:
            pass
        finally:
            dispatcher.close(channel_id)
            log.debug("Channel %s closed", channel_id)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    env = get_env()
    uvicorn.run("adlookup.main:app", host=env.bind_host, port=env.bind_port)
