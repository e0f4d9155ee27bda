from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ...domain.catalog import MODELS, TEMPLATES
from ...domain.models import GenerationRequest, ModelOption, TemplateSpec
from ...services.generation import GenerationGateway
from ...services.model_router import ModelRouter
from ..dependencies import get_gateway, get_model_router

router = APIRouter(prefix="/chat", tags=["chat"])


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@router.post("")
def generate(
    req: GenerationRequest,
    request: Request,
    gateway: GenerationGateway = Depends(get_gateway),
) -> StreamingResponse:
    # Gate failures raise GatewayError and are rendered by the app's handler.
    stream = gateway.open_stream(req, client_identity(request))
    return StreamingResponse(iter(stream), media_type=stream.media_type)


@router.get("/models", response_model=List[ModelOption])
def list_models(model_router: ModelRouter = Depends(get_model_router)) -> List[ModelOption]:
    return [
        ModelOption(
            id=m.id,
            provider=m.provider,
            provider_id=m.provider_id,
            name=m.name,
            multi_modal=m.multi_modal,
            available=model_router.provider_available(m.provider_id),
        )
        for m in MODELS
    ]


@router.get("/templates", response_model=Dict[str, TemplateSpec])
def list_templates() -> Dict[str, TemplateSpec]:
    return TEMPLATES
