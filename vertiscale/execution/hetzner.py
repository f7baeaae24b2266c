"""
Hetzner Cloud provider.

Responsibilities:
- Locate the managed server by name
- List server types compatible with the server (architecture, location)
- Shutdown with confirmation that the server is actually off
- Change server type and power on
- Cache server type metadata for a bounded time
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from vertiscale.errors import ConfigurationError, ProviderError
from vertiscale.execution.actions import wait_for_action
from vertiscale.execution.base import (
    ActionStatus,
    AsyncAction,
    BaseProvider,
    InstanceState,
    PowerStatus,
    ProviderType,
)
from vertiscale.sizing.ladder import SizeInfo
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)

_ACTION_STATUS = {
    "running": ActionStatus.PENDING,
    "success": ActionStatus.SUCCESS,
    "error": ActionStatus.ERROR,
}


@dataclass
class HetznerConfig:
    """Configuration for the Hetzner provider."""

    api_token: str
    server_name: str
    api_url: str = "https://api.hetzner.cloud/v1"
    request_timeout: float = 30.0
    server_types_cache_seconds: float = 600.0

    # Action polling
    poll_interval_seconds: float = 5.0
    max_attempts: int = 24
    stop_timeout_seconds: float = 300.0


@dataclass
class ServerType:
    """A Hetzner server type with its per-location hourly prices."""

    name: str
    architecture: str
    prices: dict[str, float]

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ServerType":
        prices = {}
        for price in data.get("prices", []):
            try:
                prices[price["location"]] = float(price["price_hourly"]["gross"])
            except (KeyError, TypeError, ValueError):
                continue
        return cls(
            name=data["name"],
            architecture=data.get("architecture", ""),
            prices=prices,
        )


class SizeCache:
    """
    Server type metadata with a bounded lifetime.

    Stale entries are dropped on read; the next read refetches.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] | None = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._types: list[ServerType] | None = None
        self._fetched_at: float | None = None

    def get(self) -> list[ServerType] | None:
        """Cached types, or None when empty or stale."""
        if self._types is None or self._fetched_at is None:
            return None
        if self._clock() - self._fetched_at >= self.ttl_seconds:
            self.invalidate()
            return None
        return self._types

    def put(self, types: list[ServerType]) -> None:
        self._types = types
        self._fetched_at = self._clock()

    def invalidate(self) -> None:
        self._types = None
        self._fetched_at = None

    @property
    def fetched_at(self) -> float | None:
        return self._fetched_at


def _power_status(status: str) -> PowerStatus:
    if status == "running":
        return PowerStatus.RUNNING
    if status == "off":
        return PowerStatus.OFF
    return PowerStatus.TRANSITIONING


class HetznerProvider(BaseProvider):
    """
    Hetzner Cloud provider using the public REST API.

    The server is looked up by name once (locate) and afterwards addressed
    by id. Server state is refreshed on every size query.
    """

    def __init__(
        self,
        config: HetznerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """
        Initialize Hetzner provider.

        Args:
            config: Provider configuration
            transport: Optional httpx transport (used by tests)
            clock: Monotonic clock for the size cache
        """
        super().__init__(ProviderType.HETZNER)
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._server: dict[str, Any] | None = None
        self._cache = SizeCache(config.server_types_cache_seconds, clock=clock)
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url.rstrip("/"),
                timeout=self.config.request_timeout,
                headers={"Authorization": f"Bearer {self.config.api_token}"},
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"hetzner: {method} {path} returned {e.response.status_code}",
                details={"body": e.response.text[:500]},
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"hetzner: {method} {path} failed: {e!r}") from e
        except ValueError as e:
            raise ProviderError(f"hetzner: invalid JSON from {method} {path}") from e

    @property
    def server_id(self) -> int:
        if self._server is None:
            raise ProviderError("hetzner: server not located yet")
        return self._server["id"]

    def _state(self) -> InstanceState:
        server = self._server or {}
        return InstanceState(
            provider_type=self.provider_type,
            instance_id=str(server.get("id", "")),
            name=server.get("name", ""),
            size=server.get("server_type", {}).get("name", ""),
            power=_power_status(server.get("status", "")),
            architecture=server.get("server_type", {}).get("architecture", ""),
            location=server.get("datacenter", {}).get("location", {}).get("name", ""),
        )

    async def locate(self) -> InstanceState:
        """Find the server by name."""
        data = await self._request("GET", "/servers", params={"name": self.config.server_name})
        servers = data.get("servers", [])
        if not servers:
            raise ConfigurationError(
                f"hetzner: server {self.config.server_name!r} not found",
                details={"server_name": self.config.server_name},
            )
        self._server = servers[0]
        state = self._state()
        logger.info("Located server", **state.to_dict())
        return state

    async def _refresh_server(self) -> dict[str, Any]:
        data = await self._request("GET", f"/servers/{self.server_id}")
        server = data.get("server")
        if not server:
            raise ProviderError(f"hetzner: server {self.server_id} not found")
        self._server = server
        return server

    async def get_state(self) -> InstanceState:
        """Fetch and return the current server state."""
        async with self._lock:
            await self._refresh_server()
            return self._state()

    async def get_current_size(self) -> str:
        async with self._lock:
            server = await self._refresh_server()
            return server["server_type"]["name"]

    async def _server_types(self) -> list[ServerType]:
        cached = self._cache.get()
        if cached is not None:
            return cached

        logger.debug("Refreshing server types cache")
        types: list[ServerType] = []
        page: int | None = 1
        while page:
            data = await self._request(
                "GET", "/server_types", params={"page": page, "per_page": 50}
            )
            types.extend(ServerType.from_api(t) for t in data.get("server_types", []))
            page = data.get("meta", {}).get("pagination", {}).get("next_page")

        self._cache.put(types)
        return types

    async def get_available_sizes(self) -> list[SizeInfo]:
        """Server types matching the server's architecture, priced in its location."""
        async with self._lock:
            await self._refresh_server()
            state = self._state()
            types = await self._server_types()

        sizes = [
            SizeInfo(
                name=t.name,
                hourly_cost=t.prices[state.location],
                architecture=t.architecture,
                location=state.location,
            )
            for t in types
            if t.architecture == state.architecture and state.location in t.prices
        ]
        logger.debug("Available sizes", sizes=[s.name for s in sizes])
        return sizes

    def _action(self, data: dict[str, Any]) -> AsyncAction:
        raw = data.get("action", data)
        error = raw.get("error") or {}
        return AsyncAction(
            action_id=str(raw["id"]),
            command=raw.get("command", ""),
            status=_ACTION_STATUS.get(raw.get("status", ""), ActionStatus.PENDING),
            error_message=error.get("message"),
        )

    async def _server_action(self, name: str, json: dict[str, Any] | None = None) -> AsyncAction:
        data = await self._request(
            "POST", f"/servers/{self.server_id}/actions/{name}", json=json
        )
        return self._action(data)

    async def poll_action(self, action: AsyncAction) -> AsyncAction:
        data = await self._request("GET", f"/actions/{action.action_id}")
        return self._action(data)

    async def stop_instance(self) -> None:
        """
        Shut down gracefully and wait until the server reports "off".

        A successful shutdown action only means the ACPI signal was
        delivered, so the server status is polled afterwards.
        """
        async with self._lock:
            action = await self._server_action("shutdown")
            await wait_for_action(
                self,
                action,
                poll_interval_seconds=self.config.poll_interval_seconds,
                max_attempts=self.config.max_attempts,
            )

            logger.debug("Shutdown acknowledged, waiting for server to power off")
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.config.stop_timeout_seconds
            while True:
                server = await self._refresh_server()
                if server.get("status") == "off":
                    break
                if loop.time() >= deadline:
                    raise ProviderError(
                        f"hetzner: server still {server.get('status')!r} after "
                        f"{self.config.stop_timeout_seconds:g}s",
                    )
                logger.debug("Server not off yet", status=server.get("status"))
                await asyncio.sleep(self.config.poll_interval_seconds)

        logger.info("Server powered off", server_id=self.server_id)

    async def resize(self, size: str) -> AsyncAction:
        """Change server type, keeping the disk size so downgrades stay possible."""
        async with self._lock:
            return await self._server_action(
                "change_type", json={"server_type": size, "upgrade_disk": False}
            )

    async def power_on(self) -> AsyncAction:
        async with self._lock:
            return await self._server_action("poweron")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
