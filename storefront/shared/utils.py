from datetime import datetime, timedelta, timezone
from typing import Optional, Generic, TypeVar, Any, List
from fastapi import HTTPException, status, Header, Request
from passlib.context import CryptContext
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
import uuid

# --- Configuration ---
class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    API_PREFIX: str = "/api"
    SERVICE_NAME: str = "storefront"
    CREATE_TABLES: bool = True
    RATE_LIMIT_ENABLED: bool = True
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    class Config:
        env_file = ".env"

# --- Database ---
def create_db_engine(settings: Settings) -> AsyncEngine:
    url = make_url(settings.DATABASE_URL)
    kwargs = {}
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # every session must see the same in-memory database
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_async_engine(url, **kwargs)

def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)

# --- Authentication ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    issued_at = to_encode.setdefault("iat", datetime.now(timezone.utc))
    if expires_delta:
        expire = issued_at + expires_delta
    else:
        expire = issued_at + timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)

    # Add JTI
    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def verify_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        raise AuthException("Invalid or expired token", status_code=status.HTTP_403_FORBIDDEN)

class Identity(BaseModel):
    user_id: int
    email: str

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationException(AppException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class ConflictException(AppException):
    # duplicate unique fields are reported as 400, like other bad input
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class AuthException(AppException):
    def __init__(self, detail: str = "Unauthorized", status_code: int = status.HTTP_401_UNAUTHORIZED):
         super().__init__(
            status_code=status_code,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ServerException(AppException):
    def __init__(self, detail: str = "Server error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

# --- Decorators/Dependencies ---
async def require_auth(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    scheme, _, param = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not param:
         raise AuthException("Access token required")

    payload = verify_token(param, request.app.state.settings)
    try:
        identity = Identity(user_id=int(payload["sub"]), email=payload["email"])
    except (KeyError, ValueError):
        raise AuthException("Invalid or expired token", status_code=status.HTTP_403_FORBIDDEN)

    # picked up by the request logger
    request.state.identity = identity
    return identity
