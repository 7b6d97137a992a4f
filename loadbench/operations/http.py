"""HTTP operations over ``httpx.AsyncClient``.

Each worker gets its own client limited to one connection, so a worker maps
to exactly one long-lived (TLS) connection to the server.
"""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog

from loadbench.engine.models import Phase, TestConfig
from loadbench.engine.operation import CallResult, Operation

logger = structlog.get_logger()

PROFILING_HEADER = "Profiling-Data"
VERSION_PATH = "/sys/v1/version"
SESSION_AUTH_PATH = "/sys/v1/session/auth"
SESSION_TERMINATE_PATH = "/sys/v1/session/terminate"


class HttpConnector:
    """Opens one single-connection ``httpx.AsyncClient`` per worker."""

    def __init__(
        self,
        scheme: str = "https",
        request_timeout: float | None = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.scheme = scheme
        self.request_timeout = request_timeout or None
        self.transport = transport

    @asynccontextmanager
    async def __call__(self, config: TestConfig) -> AsyncIterator[httpx.AsyncClient]:
        kwargs: dict[str, Any] = {}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        client = httpx.AsyncClient(
            base_url=f"{self.scheme}://{config.server_name}:{config.server_port}",
            verify=config.verify_tls,
            timeout=httpx.Timeout(self.request_timeout),
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=1),
            **kwargs,
        )
        try:
            yield client
        finally:
            await client.aclose()


async def timed_request(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    **kwargs: Any,
) -> tuple[httpx.Response, int, str | None]:
    """Send one request; returns (response, elapsed ns, profiling payload)."""
    t0 = time.perf_counter_ns()
    resp = await client.request(method, path, **kwargs)
    elapsed = time.perf_counter_ns() - t0
    resp.raise_for_status()
    return resp, elapsed, resp.headers.get(PROFILING_HEADER)


class VersionOperation(Operation[httpx.AsyncClient, None]):
    """Unauthenticated version ping."""

    async def setup(self, conn: httpx.AsyncClient, config: TestConfig) -> None:
        return None

    async def execute(
        self, conn: httpx.AsyncClient, phase: Phase, arg: None
    ) -> CallResult[None]:
        _, elapsed, profiling = await timed_request(conn, "GET", VERSION_PATH)
        return CallResult(None, elapsed, profiling)


class RequestOperation(Operation[httpx.AsyncClient, Any]):
    """Authenticated JSON request against an arbitrary endpoint.

    With ``create_session`` the API key is exchanged for a bearer token once
    per worker and the session is terminated on cleanup; otherwise the API
    key is sent as Basic credentials on every call.
    """

    def __init__(
        self,
        method: str,
        path: str,
        api_key: str = "",
        body: Any = None,
        create_session: bool = False,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.api_key = api_key
        self.body = body
        self.create_session = create_session

    async def setup(self, conn: httpx.AsyncClient, config: TestConfig) -> Any:
        basic = f"Basic {self.api_key}"
        if not self.create_session:
            conn.headers["Authorization"] = basic
            return None
        resp = await conn.post(SESSION_AUTH_PATH, headers={"Authorization": basic})
        resp.raise_for_status()
        token = resp.json().get("access_token")
        if not token:
            raise ValueError("session auth response has no access_token")
        conn.headers["Authorization"] = f"Bearer {token}"
        logger.debug("session_created", path=SESSION_AUTH_PATH)
        return None

    async def execute(self, conn: httpx.AsyncClient, phase: Phase, arg: Any) -> CallResult[Any]:
        kwargs: dict[str, Any] = {}
        if self.body is not None:
            kwargs["json"] = self.body
        _, elapsed, profiling = await timed_request(conn, self.method, self.path, **kwargs)
        return CallResult(arg, elapsed, profiling)

    async def cleanup(self, conn: httpx.AsyncClient) -> None:
        if self.create_session:
            resp = await conn.post(SESSION_TERMINATE_PATH)
            resp.raise_for_status()
