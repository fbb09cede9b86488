from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from reelsync.api import deps
from reelsync.core.auth import mint_token
from reelsync.core.config import Settings


router = APIRouter(prefix="/admin", tags=["admin"])


class DevTokenRequest(BaseModel):
    user_id: str = Field(..., min_length=1, examples=["user_2abc"])
    scopes: list[str] = Field(default_factory=list)


class DevTokenResponse(BaseModel):
    token: str


@router.post("/dev-token", response_model=DevTokenResponse, summary="Mint development JWT")
async def mint_dev_token(payload: DevTokenRequest, settings: Settings = Depends(deps.get_app_settings)) -> DevTokenResponse:
    if settings.environment_lower not in {"development", "dev", "test"}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="dev_token_disabled")
    return DevTokenResponse(token=mint_token(settings, payload.user_id, scopes=payload.scopes))


__all__ = ["router"]
