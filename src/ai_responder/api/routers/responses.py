import json
import logging

from fastapi import APIRouter, Depends, Request

from ai_responder.api.config import get_settings
from ai_responder.api.deps import get_responder
from ai_responder.api.schemas import GenerateResponseRequest, GenerateResponseResponse
from ai_responder.resilience.responder import ResilientResponder

router = APIRouter()


@router.post(
    "/generate-response",
    response_model=GenerateResponseResponse,
    summary="Generate a customer-service response",
    description=(
        "Same pipeline for the dashboard test chat (`is_preview=true`) and production channels.\n\n"
        "```\n"
        "curl -X POST http://localhost:8000/v1/generate-response \\\n"
        "  -H 'Content-Type: application/json' \\\n"
        "  -d '{\"tenant_id\":\"t-1\",\"message\":\"¿Cuánto cuesta una limpieza?\",\"channel\":\"whatsapp\"}'\n"
        "```\n"
    ),
)
async def generate_response(
    payload: GenerateResponseRequest,
    request: Request,
    responder: ResilientResponder = Depends(get_responder),
) -> GenerateResponseResponse:
    logger = logging.getLogger(__name__)
    trace_id = getattr(request.state, "trace_id", None)
    result = await responder.generate(
        payload.tenant_id, payload.message, payload.to_options(trace_id=trace_id)
    )
    logger.info(
        json.dumps(
            {
                "event": "api_response",
                "trace_id": trace_id,
                "tenant_id": payload.tenant_id,
                "channel": payload.channel,
                "is_preview": payload.is_preview,
                "success": result.success,
                "intent": result.intent,
                "escalated": result.escalated,
                "used_fallback": result.used_fallback,
                "tokens_used": result.tokens_used,
                "processing_time_ms": result.processing_time_ms,
            },
            ensure_ascii=False,
        )
    )
    if get_settings().debug_logging:
        logger.info(
            json.dumps(
                {
                    "event": "api_debug",
                    "trace_id": trace_id,
                    "message": payload.message,
                    "response": result.response,
                    "tools_invoked": list(result.tools_invoked),
                },
                ensure_ascii=False,
            )
        )
    return GenerateResponseResponse.from_result(result)
