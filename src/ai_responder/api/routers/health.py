from fastapi import APIRouter, Depends

from ai_responder.api.deps import get_circuit_breaker
from ai_responder.api.schemas import HealthResponse
from ai_responder.resilience.circuit_breaker import CircuitBreaker

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(breaker: CircuitBreaker = Depends(get_circuit_breaker)) -> HealthResponse:
    return HealthResponse(breaker_state=breaker.state.value)
