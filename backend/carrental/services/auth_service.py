"""
Authentication service handling registration, password login and
one-time-code login.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from carrental.models.user import User, ROLE_ADMIN, ROLE_USER
from carrental.schemas.user import UserCreate, UserLogin
from carrental.services.cache_service import OtpStore
from carrental.core.security import hash_password, verify_password, create_access_token
from carrental.core.logging import get_logger

logger = get_logger(__name__)


async def _get_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def _check_can_login(user: User) -> None:
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )
    if user.is_blocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account has been blocked",
        )


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Register a new customer with hashed password.
    Raises 409 if the email already exists.
    """
    if await _get_by_email(db, user_data.email):
        logger.warning("registration_failed", reason="email_exists", email=user_data.email)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        email=user_data.email.lower(),
        name=user_data.name,
        phone=user_data.phone,
        hashed_password=hash_password(user_data.password),
        role=ROLE_USER,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, email=user.email)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """
    Authenticate a principal and return a JWT access token.
    Raises 401 if credentials are invalid.
    """
    user = await _get_by_email(db, login_data.email)

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    _check_can_login(user)

    token = create_access_token(data={"sub": str(user.id)})
    logger.info("user_logged_in", user_id=user.id, role=user.role)
    return token


async def request_login_code(db: AsyncSession, otp_store: OtpStore, email: str) -> Optional[tuple]:
    """
    Issue a login code for a known principal.

    Returns (email, code) for the caller to deliver, or None when the email
    is unknown; the route answers identically in both cases.
    """
    user = await _get_by_email(db, email)
    if user is None:
        logger.info("otp_requested_unknown_email", email=email)
        return None

    _check_can_login(user)
    code = await otp_store.issue(user.email)
    return user.email, code


async def verify_login_code(db: AsyncSession, otp_store: OtpStore, email: str, code: str) -> str:
    """Exchange a valid one-time code for an access token."""
    user = await _get_by_email(db, email)
    if user is None or not await otp_store.consume(user.email, code):
        logger.warning("otp_login_failed", email=email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired code",
        )

    _check_can_login(user)
    token = create_access_token(data={"sub": str(user.id)})
    logger.info("user_logged_in", user_id=user.id, role=user.role, method="otp")
    return token


async def ensure_admin(db: AsyncSession, email: str, password: str) -> User:
    """Create the bootstrap admin if it does not exist yet."""
    user = await _get_by_email(db, email)
    if user is not None:
        if user.role != ROLE_ADMIN:
            logger.warning("bootstrap_admin_email_taken", email=email)
        return user

    user = User(
        email=email.lower(),
        name="Administrator",
        hashed_password=hash_password(password),
        role=ROLE_ADMIN,
    )
    db.add(user)
    await db.flush()
    logger.info("bootstrap_admin_created", user_id=user.id, email=user.email)
    return user
