"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"dsync_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"dsync_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"dsync_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"dsync_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

PRESENCE_ONLINE = Gauge(
	"dsync_presence_online_users",
	"Users with at least one live connection",
)

CHAT_SEND = Counter(
	"dsync_chat_send_total",
	"Chat messages persisted",
	["kind"],
)

CHAT_SEND_REPLAYED = Counter(
	"dsync_chat_send_replayed_total",
	"Sends answered from an existing client_msg_id",
)

CHAT_EDITS = Counter(
	"dsync_chat_edits_total",
	"Chat messages edited",
)

CHAT_DELETES = Counter(
	"dsync_chat_deletes_total",
	"Chat messages deleted",
)

CHAT_LIKES = Counter(
	"dsync_chat_like_updates_total",
	"Like set updates",
	["action"],
)

CHAT_READ_UPDATES = Counter(
	"dsync_chat_read_updates_total",
	"Read receipts appended",
)

CHAT_REJECTED = Counter(
	"dsync_chat_rejected_total",
	"Chat actions rejected by validation",
	["code"],
)

FANOUT_FAILURES = Counter(
	"dsync_fanout_failures_total",
	"Best-effort fan-out emits that raised",
	["event"],
)

ATTACHMENT_CLEANUP_FAILURES = Counter(
	"dsync_attachment_cleanup_failures_total",
	"Attachment deletions that failed after a message delete",
)

ATTACHMENT_UPLOADS = Counter(
	"dsync_attachment_uploads_total",
	"Attachment uploads by result",
	["result"],
)

REDIS_UP = Gauge("dsync_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("dsync_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("dsync_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("dsync_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def set_online_users(count: int) -> None:
	PRESENCE_ONLINE.set(count)


def inc_chat_send(kind: str) -> None:
	CHAT_SEND.labels(kind=kind).inc()


def inc_chat_send_replayed() -> None:
	CHAT_SEND_REPLAYED.inc()


def inc_chat_edit() -> None:
	CHAT_EDITS.inc()


def inc_chat_delete() -> None:
	CHAT_DELETES.inc()


def inc_chat_like(action: str) -> None:
	CHAT_LIKES.labels(action=action).inc()


def inc_chat_read() -> None:
	CHAT_READ_UPDATES.inc()


def inc_chat_rejected(code: str) -> None:
	CHAT_REJECTED.labels(code=code).inc()


def inc_fanout_failure(event: str) -> None:
	FANOUT_FAILURES.labels(event=event).inc()


def inc_attachment_cleanup_failure() -> None:
	ATTACHMENT_CLEANUP_FAILURES.inc()


def inc_attachment_upload(result: str) -> None:
	ATTACHMENT_UPLOADS.labels(result=result).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
