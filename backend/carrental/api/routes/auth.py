"""
Authentication endpoints: register, password login, one-time-code login.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.db.session import get_db
from carrental.models.user import User
from carrental.schemas.user import (
    UserCreate,
    UserResponse,
    UserLogin,
    Token,
    OtpRequest,
    OtpVerify,
    OtpRequestResponse,
)
from carrental.services.auth_service import (
    register_user,
    authenticate_user,
    request_login_code,
    verify_login_code,
)
from carrental.services.cache_service import OtpStore, get_otp_store
from carrental.services.email_service import send_login_code
from carrental.core.security import get_current_user

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a new customer account."""
    user = await register_user(db, user_data)
    return user


@router.post("/login", response_model=Token)
async def login(login_data: UserLogin, db: AsyncSession = Depends(get_db)):
    """Authenticate and receive a JWT access token."""
    token = await authenticate_user(db, login_data)
    return Token(access_token=token)


@router.post("/otp/request", response_model=OtpRequestResponse)
async def request_otp(
    otp_request: OtpRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    otp_store: OtpStore = Depends(get_otp_store),
):
    """
    Email a one-time login code. The answer is the same whether or not
    the address belongs to an account.
    """
    issued = await request_login_code(db, otp_store, otp_request.email)
    if issued:
        email, code = issued
        background_tasks.add_task(send_login_code, email, code, otp_store.ttl_seconds)
    return OtpRequestResponse(
        message="If the account exists, a login code has been sent",
        expires_in=otp_store.ttl_seconds,
    )


@router.post("/otp/verify", response_model=Token)
async def verify_otp(
    otp_verify: OtpVerify,
    db: AsyncSession = Depends(get_db),
    otp_store: OtpStore = Depends(get_otp_store),
):
    """Exchange a one-time code for an access token."""
    token = await verify_login_code(db, otp_store, otp_verify.email, otp_verify.code)
    return Token(access_token=token)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user
