from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.audit import log_audit
from storefront.core.clock import utcnow
from storefront.core.config import settings
from storefront.core.db import get_session
from storefront.core.deps import get_current_user
from storefront.core.logging import user_code_ctx_var
from storefront.core.rate_limit import get_client_ip, limiter
from storefront.core.security import create_access_token, verify_password_async
from storefront.models.user import AppUser
from storefront.schemas.auth import LoginRequest, LoginResponse, MeOut

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
@limiter.limit(settings.LOGIN_RATE)
async def login(
    payload: LoginRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    user = (
        await session.execute(select(AppUser).where(AppUser.username == payload.username))
    ).scalar_one_or_none()

    if (
        not user
        or not user.is_active
        or not await verify_password_async(payload.password, user.password_hash)
    ):
        if user:
            await log_audit(
                session,
                user.user_code,
                user.role,
                "auth",
                None,
                "LOGIN_FAILED",
                details={"reason": "invalid_credentials"},
                remote_addr=get_client_ip(request),
                independent_txn=True,
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
        )

    await session.execute(
        update(AppUser)
        .where(AppUser.user_code == user.user_code)
        .values(last_login_at=utcnow())
    )
    request.state.user_code = user.user_code
    user_code_ctx_var.set(user.user_code)
    access_token = create_access_token(
        {"sub": user.user_code, "role": user.role, "branch_id": user.branch_id}
    )
    await log_audit(
        session,
        user.user_code,
        user.role,
        "auth",
        None,
        "LOGIN",
        remote_addr=get_client_ip(request),
    )
    await session.commit()
    return LoginResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user_code=user.user_code,
        display_name=user.display_name,
        role=user.role,
        branch_id=user.branch_id,
    )


@router.get("/me", response_model=MeOut)
async def me(user: AppUser = Depends(get_current_user)):
    return MeOut(
        user_code=user.user_code,
        username=user.username,
        display_name=user.display_name,
        role=user.role,
        branch_id=user.branch_id,
    )
