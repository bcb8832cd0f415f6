from __future__ import annotations
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from switchboard.config import Settings
from switchboard.core.gateway import Agent, Gateway
from switchboard.observability.logging import configure_logging, get_logger

log = get_logger("app")

VERSION = "0.1.0"

def create_app(settings: Settings, agent: Agent | None = None) -> FastAPI:
    configure_logging(settings.log_level, settings.json_logs, instance_id=settings.instance_id)
    app = FastAPI(title="Switchboard", version=VERSION)

    gateway = Gateway(settings, agent=agent)
    app.state.gateway = gateway

    @app.on_event("startup")
    async def _startup():
        await gateway.start()
        log.info("server_started", host=settings.host, port=settings.port)

    @app.on_event("shutdown")
    async def _shutdown():
        await gateway.close()

    @app.get(settings.health_path)
    async def healthz():
        return {
            "ok": True,
            "service": "switchboard",
            "version": VERSION,
            "instance_id": settings.instance_id,
            "channels": gateway.status(),
        }

    @app.get(settings.metrics_path)
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app
