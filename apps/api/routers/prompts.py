"""Prompt enhancement router."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.prompt_enhance import PromptEnhanceError, enhance_prompt

router = APIRouter()


class EnhancePromptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    video_type: Optional[str] = Field(default="text-to-video", alias="videoType")


@router.post("/enhance")
async def enhance(
    request: EnhancePromptRequest,
    _rate_limit: None = Depends(rate_limit("prompt_enhance", limit=60, window_seconds=3600)),
    _user: User = Depends(get_current_user),
):
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")
    try:
        enhanced = await enhance_prompt(request.prompt.strip(), request.video_type or "text-to-video")
    except PromptEnhanceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"enhanced_prompt": enhanced}
