"""Primary/fallback failover policy for chat requests."""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from app.config import settings
from app.services.exceptions import FailoverExhaustedError, ProviderError
from app.services.provider_service import ProviderService
from app.services.routing_service import RoutePlan, RouteTarget
from app.services.vendors import ChatRequest, StreamEvent, StreamEventType, VendorAdapter, get_adapter

logger = logging.getLogger(__name__)

FAILOVER_MESSAGE = "Switching to backup provider..."

EventHandler = Callable[[StreamEvent], Awaitable[None]]


@dataclass
class FailoverResult:
    """Outcome of a successful run."""

    response: str
    provider_used: RouteTarget
    model_used: str
    failover_count: int


class FailoverOrchestrator:
    """Try the primary provider, then the fallback inside a fixed time budget.

    The budget is measured from session start, so a slow primary failure can
    use it up and rule out the fallback. It only gates starting the fallback;
    an attempt already in flight runs to completion.
    """

    def __init__(
        self,
        adapter_lookup: Callable[[str], VendorAdapter] = get_adapter,
        clock: Callable[[], float] = time.monotonic,
        budget_ms: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        default_target: Optional[RouteTarget] = None
    ):
        """Initialize the orchestrator.

        Args:
            adapter_lookup: Maps a provider type to its vendor adapter.
            clock: Monotonic clock in seconds; ``started_at`` uses the same clock.
            budget_ms: Failover budget; defaults to ``settings.failover_budget_ms``.
            client: Shared HTTP client for vendor calls.
            default_target: Provider and model answering requests that name no
                chatbot; defaults to the configured default provider.
        """
        self.adapter_lookup = adapter_lookup
        self.clock = clock
        self.budget_ms = budget_ms if budget_ms is not None else settings.failover_budget_ms
        self.client = client
        self.default_target = default_target or RouteTarget(
            connection=ProviderService.default_connection(),
            model=settings.default_model
        )

    def default_route(self) -> RoutePlan:
        """Route for requests that name no chatbot."""
        return RoutePlan(primary=self.default_target)

    async def run(
        self,
        route: RoutePlan,
        request: ChatRequest,
        on_event: EventHandler,
        started_at: float
    ) -> FailoverResult:
        """Produce one answer for the request.

        Content and failover events are passed to ``on_event`` as they happen.

        Args:
            route: Resolved primary and fallback targets.
            request: Normalized request; its model is replaced per target.
            on_event: Async callback receiving normalized events.
            started_at: Session start on this orchestrator's clock.

        Returns:
            FailoverResult of the attempt that succeeded.

        Raises:
            FailoverExhaustedError: If no attempt succeeded.
        """
        if route.primary is None and route.fallback is None:
            raise FailoverExhaustedError(route.reason or "No provider available for this request")

        primary_error = None
        if route.primary is not None:
            try:
                logger.info(f"Trying primary provider '{route.primary.provider_name}'")
                return await self._attempt(route.primary, request, on_event, failover_count=0)
            except (ProviderError, httpx.HTTPError) as e:
                primary_error = e
                logger.error(f"Primary provider '{route.primary.provider_name}' failed: {e}")
        else:
            logger.warning("Primary provider is unavailable, treating it as failed")

        if route.fallback is None:
            raise FailoverExhaustedError(
                str(primary_error),
                failover_count=0,
                provider_name=route.primary.provider_name,
                provider_id=route.primary.provider_id
            ) from primary_error

        elapsed_ms = (self.clock() - started_at) * 1000
        if elapsed_ms >= self.budget_ms:
            logger.warning(
                f"Failover budget exhausted ({elapsed_ms:.0f}ms >= {self.budget_ms}ms), "
                f"not trying fallback '{route.fallback.provider_name}'"
            )
            failed = route.primary or route.fallback
            message = str(primary_error) if primary_error else "Primary provider unavailable"
            raise FailoverExhaustedError(
                f"{message} (failover budget of {self.budget_ms}ms exhausted)",
                failover_count=0,
                provider_name=failed.provider_name,
                provider_id=failed.provider_id
            ) from primary_error

        await on_event(StreamEvent(StreamEventType.FAILOVER, FAILOVER_MESSAGE))
        try:
            logger.info(f"Trying fallback provider '{route.fallback.provider_name}'")
            return await self._attempt(route.fallback, request, on_event, failover_count=1)
        except (ProviderError, httpx.HTTPError) as e:
            logger.error(f"Fallback provider '{route.fallback.provider_name}' failed: {e}")
            raise FailoverExhaustedError(
                str(e),
                failover_count=1,
                provider_name=route.fallback.provider_name,
                provider_id=route.fallback.provider_id
            ) from e

    async def _attempt(
        self,
        target: RouteTarget,
        request: ChatRequest,
        on_event: EventHandler,
        failover_count: int
    ) -> FailoverResult:
        adapter = self.adapter_lookup(target.connection.provider_type)
        chunks = []
        async for event in adapter.invoke(target.connection, request.with_model(target.model), client=self.client):
            chunks.append(event.payload)
            await on_event(event)

        return FailoverResult(
            response="".join(chunks),
            provider_used=target,
            model_used=target.model,
            failover_count=failover_count
        )
