import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.ai_feature.llm_gateway import LLMError, LLMGateway, get_assistant_gateway
from app.core import schemas
from app.core.security import get_current_user

router = APIRouter(prefix="/api", tags=["Assistant"])

user_dep = Annotated[schemas.CurrentUser, Depends(get_current_user)]
gateway_dep = Annotated[LLMGateway, Depends(get_assistant_gateway)]

SYSTEM_PROMPT = (
    "You are Si-Mbah assistant: helpful, concise, and specific to an "
    "Indonesian herbal shop admin."
)

FALLBACK_REPLY = (
    'Halo, saya Asisten Si-Mbah. Anda bertanya: "{message}". Untuk fitur ini, '
    "saya dapat membantu dengan petunjuk umum (mis. cara menambah produk, melihat "
    "pesanan). Jika anda ingin jawaban yang lebih lengkap atau berdasar data, "
    "hubungkan proyek dengan layanan AI (SET ASSISTANT_API_KEY)."
)


async def proxy_to_assistant(gateway: LLMGateway, message: str) -> Optional[str]:
    """Ask the completion API; None when it is not configured or fails."""
    if not gateway.api_key:
        return None
    try:
        reply = await gateway.chat(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ],
            temperature=0.2,
            max_tokens=512,
        )
    except LLMError as error:
        logging.error(f"Assistant proxy error: {error}")
        return None
    return reply or None


@router.post("/assistant", response_model=schemas.AssistantResponse)
async def ask_assistant(
    payload: schemas.AssistantRequest, current_user: user_dep, gateway: gateway_dep
):
    """Free-form help for the admin UI, with a canned reply when no model is set."""
    message = (payload.message or "").strip()
    if not message:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required"
        )

    reply = await proxy_to_assistant(gateway, message)
    if reply is None:
        reply = FALLBACK_REPLY.format(message=message)
    return {"reply": reply}
