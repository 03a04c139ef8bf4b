"""ASGI application entrypoint: FastAPI for REST wrapped by Socket.IO for the live channel.

Run with `uvicorn dsync.main:socket_app`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

from dsync.api import chats, messages, ops, users
from dsync.api.errors import install_error_handlers
from dsync.domain.chat import container
from dsync.domain.presence.broker import SocketBroker
from dsync.domain.presence.registry import PresenceRegistry
from dsync.domain.presence.sockets import SyncNamespace
from dsync.infra import postgres
from dsync.obs import init as obs_init
from dsync.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	if pool is not None:
		container.configure_postgres(pool)
	await registry.init()
	try:
		yield
	finally:
		await sync_namespace.shutdown()
		await postgres.close_pool()


app = FastAPI(title="DSync", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = ["http://localhost:5173", "http://localhost:3000"] if settings.is_dev() else []
app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

if settings.is_dev():
	upload_root = Path(settings.upload_root).resolve()
	upload_root.mkdir(parents=True, exist_ok=True)
	app.mount("/uploads", StaticFiles(directory=str(upload_root), check_dir=True), name="uploads")

registry = PresenceRegistry()
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
sync_namespace = SyncNamespace(registry)
sio.register_namespace(sync_namespace)
container.configure(broker=SocketBroker(sync_namespace), registry=registry)

socket_app = socketio.ASGIApp(sio, other_asgi_app=app)

obs_init(app)

app.include_router(ops.router)
app.include_router(chats.router)
app.include_router(messages.router)
app.include_router(users.router)
