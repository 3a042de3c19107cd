import logging
from datetime import datetime, timedelta, timezone
from typing import Tuple
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import User
from storefront.schemas import Token
from storefront.shared.security_config import validate_password_strength
from storefront.shared.utils import (
    Settings, Identity, get_password_hash, verify_password, create_access_token,
    ValidationException, ConflictException, NotFoundException, AuthException
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
# checked against when the email is unknown, so both failures cost one bcrypt round
UNKNOWN_USER_HASH = get_password_hash("storefront-unknown-user")


def _require_fields(**fields):
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise ValidationException("All fields are required")


class AuthService:
    """Registration, login and the current user's profile."""

    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings

    async def register(self, name: str, email: str, phone: str, address: str, password: str) -> Tuple[User, Token]:
        _require_fields(name=name, email=email, phone=phone, address=address, password=password)
        if not validate_password_strength(password):
            raise ValidationException("Password must be at least 6 characters")

        email = email.strip().lower()
        if await self._email_taken(email):
            raise ConflictException("Email already exists")

        user = User(
            name=name,
            email=email,
            phone=phone,
            address=address,
            password_hash=get_password_hash(password),
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            # lost a race with a concurrent registration
            await self.session.rollback()
            raise ConflictException("Email already exists")

        logger.info("User registered", extra={"user_id": user.id})
        return user, self.issue_token(user)

    async def login(self, email: str, password: str) -> Tuple[User, Token]:
        if not email or not password:
            raise ValidationException("Email and password are required")

        result = await self.session.execute(select(User).where(User.email == email.strip().lower()))
        user = result.scalar_one_or_none()
        # same answer for unknown email and wrong password
        if user is None:
            verify_password(password, UNKNOWN_USER_HASH)
            raise AuthException(INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            raise AuthException(INVALID_CREDENTIALS)

        return user, self.issue_token(user)

    def issue_token(self, user: User) -> Token:
        issued_at = datetime.now(timezone.utc).replace(microsecond=0)
        lifetime = timedelta(days=self.settings.ACCESS_TOKEN_EXPIRE_DAYS)
        token = create_access_token(
            {"sub": str(user.id), "email": user.email, "iat": issued_at},
            self.settings,
            expires_delta=lifetime,
        )
        return Token(token=token, issued_at=issued_at, expires_at=issued_at + lifetime)

    async def get_current_user(self, identity: Identity) -> User:
        user = await self.session.get(User, identity.user_id)
        if user is None:
            raise NotFoundException("User not found")
        return user

    async def update_user(self, identity: Identity, name: str, email: str, phone: str, address: str) -> User:
        _require_fields(name=name, email=email, phone=phone, address=address)

        user = await self.get_current_user(identity)
        email = email.strip().lower()
        if email != user.email.lower() and await self._email_taken(email, exclude_user_id=user.id):
            raise ConflictException("Email already exists")

        user.name = name
        user.email = email
        user.phone = phone
        user.address = address
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictException("Email already exists")
        return user

    async def _email_taken(self, email: str, exclude_user_id: int = None) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        result = await self.session.execute(stmt)
        return result.first() is not None
