"""
PostgreSQL Auth Routes - Login and current user
"""
from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr
from datetime import datetime, timezone, timedelta
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func

from database import get_postgres_session, app_settings, User

# JWT Settings
ALGORITHM = "HS256"

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security
security = HTTPBearer()

# Create router
pg_auth_router = APIRouter(prefix="/api/pg", tags=["PostgreSQL Auth"])

# ==================== PYDANTIC MODELS ====================

class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    is_active: bool = True

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ==================== HELPER FUNCTIONS ====================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=app_settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, app_settings.secret_key, algorithm=ALGORITHM)


def to_user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.full_name,
        email=user.email,
        is_active=user.is_active,
    )


async def get_current_user_pg(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Get current user from PostgreSQL"""
    try:
        token = credentials.credentials
        payload = jwt.decode(token, app_settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    return user


# ==================== AUTH ROUTES ====================

@pg_auth_router.get("/health")
async def pg_health_check(session: AsyncSession = Depends(get_postgres_session)):
    """Health check for PostgreSQL connection"""
    try:
        result = await session.execute(select(func.count()).select_from(User))
        count = result.scalar()
        return {"status": "healthy", "database": "postgresql", "users_count": count}
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database error: {str(e)}")


@pg_auth_router.post("/auth/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    session: AsyncSession = Depends(get_postgres_session)
):
    """Login user"""
    result = await session.execute(select(User).where(User.email == credentials.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    access_token = create_access_token({"sub": user.id})

    return TokenResponse(access_token=access_token, user=to_user_response(user))


@pg_auth_router.get("/auth/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user_pg)):
    """Get current user info"""
    return to_user_response(current_user)
