"""Health check API route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from syncbridge.bridge import SyncBridge
from syncbridge.core.types import CircuitState
from syncbridge.server.api.deps import get_bridge
from syncbridge.server.schemas import CircuitBreakerStatus, HealthResponse, QueueStatus

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(bridge: SyncBridge = Depends(get_bridge)) -> HealthResponse:
    """Report breaker states, queue sizes and in-flight work.

    Status is "degraded" while any circuit breaker is not closed.
    """
    breakers = [
        bridge.legacy_client.circuit_breaker_metrics(),
        bridge.canonical_client.circuit_breaker_metrics(),
    ]
    degraded = any(metrics.state != CircuitState.CLOSED for metrics in breakers)
    return HealthResponse(
        status="degraded" if degraded else "ok",
        circuit_breakers=[
            CircuitBreakerStatus(
                name=metrics.name,
                state=metrics.state.value,
                consecutive_failures=metrics.consecutive_failures,
                consecutive_successes=metrics.consecutive_successes,
            )
            for metrics in breakers
        ],
        queue=QueueStatus(
            primary=bridge.queue.primary_size,
            retry=bridge.queue.retry_size,
            dead_letter=bridge.queue.dead_letter_size,
        ),
        in_flight_ingestions=bridge.orchestrator.in_flight_count,
        polling_enabled=bridge.detector.is_polling_enabled,
        audit_sequence=bridge.audit_chain.current_sequence,
    )
