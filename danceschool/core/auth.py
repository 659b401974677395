from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from .config import settings
from .database import get_db
from .errors import ForbiddenError
from ..models.user import User
import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})

    # 'sub' must be a string
    if 'sub' in to_encode:
        to_encode['sub'] = str(to_encode['sub'])

    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    logger.info(f"Created token for user {data.get('sub')} with type {data.get('type')}")
    return encoded_jwt


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    token = credentials.credentials

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id_str = payload.get("sub")
        user_type = payload.get("type")

        if user_id_str is None or user_type is None:
            logger.error("Token missing required fields")
            raise HTTPException(status_code=401, detail="Invalid token")

        try:
            user_id = int(user_id_str)
        except ValueError:
            logger.error(f"Cannot convert user_id '{user_id_str}' to int")
            raise HTTPException(status_code=401, detail="Invalid token")

        return {"user_id": user_id, "user_type": user_type}

    except JWTError as e:
        logger.error(f"JWT decode error: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(token_data: dict = Depends(verify_token),
                           db: AsyncSession = Depends(get_db)) -> User:
    result = await db.execute(
        select(User)
        .filter(User.id == token_data["user_id"])
        .options(selectinload(User.assigned_groups))
    )
    user = result.scalar_one_or_none()
    if not user:
        logger.error(f"Token refers to missing user {token_data['user_id']}")
        raise HTTPException(status_code=401, detail="Not authorized, user not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        logger.error(f"Access denied - role is '{user.role}', expected 'admin'")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def require_staff(user: User = Depends(get_current_user)) -> User:
    if user.role not in ("admin", "teacher"):
        logger.error(f"Access denied - role is '{user.role}', expected 'admin' or 'teacher'")
        raise HTTPException(status_code=403, detail="Teacher or admin access required")
    return user


def ensure_group_access(user: User, group_id: int, message: str = "Not authorized to access this group"):
    """Teachers may only touch the groups they are assigned to"""
    if user.role == "teacher" and group_id not in user.assigned_group_ids:
        raise ForbiddenError(message)


def accessible_group_ids(user: User):
    """None means unrestricted"""
    if user.role == "teacher":
        return user.assigned_group_ids
    return None
