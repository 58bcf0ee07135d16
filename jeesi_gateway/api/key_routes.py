"""
API Key and Balance Routes - Dashboard endpoints for signed-in users.

All endpoints require a session bearer token.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from jeesi_gateway.api.dependencies import get_session_user
from jeesi_gateway.db.session import get_write_db
from jeesi_gateway.exceptions import APIKeyNotFoundError
from jeesi_gateway.models.api import (
    APIKeyInfo,
    CreateAPIKeyRequest,
    CreateAPIKeyResponse,
    CreditBalanceResponse,
    ErrorResponse,
    RevokeAPIKeyResponse,
)
from jeesi_gateway.models.domain import APIKeyData, SessionUser
from jeesi_gateway.services.api_key import APIKeyService
from jeesi_gateway.services.credits import CreditLedgerService

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", responses={401: {"model": ErrorResponse}})


def _to_key_info(key: APIKeyData) -> APIKeyInfo:
    return APIKeyInfo(
        id=key.key_id,
        key_name=key.key_name,
        key_prefix=key.key_prefix,
        created_at=key.created_at,
        last_used_at=key.last_used_at,
    )


@router.post(
    "/api-keys",
    response_model=CreateAPIKeyResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_api_key(
    request: CreateAPIKeyRequest,
    user: SessionUser = Depends(get_session_user),
    db: AsyncSession = Depends(get_write_db),
) -> CreateAPIKeyResponse:
    """
    Issue a new API key.

    The plaintext key is returned in this response only; it is never stored.
    """
    generated = await APIKeyService(db).create_api_key(user.user_id, request.key_name)
    return CreateAPIKeyResponse(
        api_key=generated.plaintext_key,
        key_data=_to_key_info(generated.key),
    )


@router.get("/api-keys", response_model=list[APIKeyInfo])
async def list_api_keys(
    user: SessionUser = Depends(get_session_user),
    db: AsyncSession = Depends(get_write_db),
) -> list[APIKeyInfo]:
    """List the caller's active API keys, newest first."""
    keys = await APIKeyService(db).list_api_keys(user.user_id)
    return [_to_key_info(key) for key in keys]


@router.delete(
    "/api-keys/{key_id}",
    response_model=RevokeAPIKeyResponse,
    responses={404: {"model": ErrorResponse}},
)
async def revoke_api_key(
    key_id: UUID,
    user: SessionUser = Depends(get_session_user),
    db: AsyncSession = Depends(get_write_db),
) -> RevokeAPIKeyResponse:
    """Revoke one of the caller's API keys."""
    try:
        key = await APIKeyService(db).revoke_api_key(user.user_id, key_id)
    except APIKeyNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found",
        ) from exc

    return RevokeAPIKeyResponse(id=key.key_id, is_active=key.is_active)


@router.get("/credits/balance", response_model=CreditBalanceResponse)
async def get_credit_balance(
    user: SessionUser = Depends(get_session_user),
    db: AsyncSession = Depends(get_write_db),
) -> CreditBalanceResponse:
    """Get the caller's credit balance, granting the default on first access."""
    balance = await CreditLedgerService(db).get_or_create_balance(user.user_id)
    return CreditBalanceResponse(
        credits_remaining=balance.credits_remaining,
        credits_used_this_month=balance.credits_used_this_month,
        plan_type=balance.plan_type,
    )
