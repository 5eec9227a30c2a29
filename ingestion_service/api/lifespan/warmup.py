"""
Best-effort cache warm-up triggers.

Each trigger is a detached task: its outcome is logged and counted, never
awaited by the startup path, never retried.
"""
import asyncio
from typing import Dict, Optional, Set

import httpx
import structlog

from ...core.exceptions import WarmupError
from ..metrics.registry import track_warmup

logger = structlog.get_logger("ingestion.warmup")

WARMUP_TARGETS: Dict[str, str] = {
    "feature_cache": "wifis/patch/reloadFeatureCache",
    "heatmap": "wifis/patch/reloadHeatmapData",
}


class CacheWarmer:
    """Fires one PATCH per warm-up target against the service itself."""

    def __init__(
        self,
        base_url: str,
        api_prefix: str,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix
        self.timeout = timeout
        self._transport = transport
        self._pending: Set[asyncio.Task] = set()
        self.triggered = False

    @property
    def pending(self) -> Set[asyncio.Task]:
        """Warm-up tasks still in flight."""
        return set(self._pending)

    def use_port(self, port: int) -> None:
        """Point the warm-up at the port the service actually bound."""
        self.base_url = f"http://localhost:{port}"

    def url_for(self, target: str) -> str:
        return f"{self.base_url}{self.api_prefix}{WARMUP_TARGETS[target]}"

    def trigger(self) -> None:
        """Start every warm-up request and return immediately."""
        if self.triggered:
            logger.warning("cache_warmup_already_triggered")
            return
        self.triggered = True

        logger.info("cache_warmup_triggered", targets=list(WARMUP_TARGETS))
        for target in WARMUP_TARGETS:
            task = asyncio.create_task(self._fire(target), name=f"warmup:{target}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _fire(self, target: str) -> None:
        url = self.url_for(target)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.patch(url)
            if response.is_error:
                raise WarmupError(target, f"HTTP {response.status_code}")
        except (httpx.HTTPError, WarmupError) as e:
            track_warmup(target, "failed")
            logger.warning("cache_warmup_failed", target=target, url=url, error=str(e))
            return

        track_warmup(target, "ok")
        logger.info("cache_warmup_completed", target=target, status=response.status_code)
