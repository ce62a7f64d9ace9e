from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..services.orchestrator import QueryOrchestrator, get_orchestrator

router = APIRouter()


@router.get("/healthz")
async def health_check(orchestrator: QueryOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    """Health check endpoint that verifies provider status"""

    provider_status = await orchestrator.health()

    # Disabled providers do not make the gateway unhealthy
    all_healthy = all(
        status.get("status") in ("healthy", "unavailable")
        for status in provider_status.values()
    )

    available_providers = sum(
        1 for status in provider_status.values()
        if status.get("status") == "healthy"
    )

    return {
        "status": "healthy" if all_healthy and available_providers > 0 else "degraded",
        "providers": provider_status,
        "available_providers": available_providers,
        "total_providers": len(provider_status),
    }
