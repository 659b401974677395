from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, EmailStr, Field
from typing import List
from ..core.database import get_db
from ..core.auth import verify_password, create_access_token, get_password_hash, get_current_user
from ..models.user import User
from .schemas import RequestModel, GroupBrief
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class LoginRequest(RequestModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    user_type: str
    user_id: int
    user_name: str


class RegisterAdminRequest(RequestModel):
    name: str
    email: EmailStr
    password: str = Field(min_length=6)


class MeResponse(BaseModel):
    id: int
    name: str
    email: str
    user_type: str
    assigned_groups: List[GroupBrief]


def _login_response(user: User) -> LoginResponse:
    token = create_access_token(data={"sub": user.id, "type": user.role})
    return LoginResponse(
        access_token=token,
        token_type="bearer",
        user_type=user.role,
        user_id=user.id,
        user_name=user.name
    )


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """
    Authenticate a user and return an access token
    """
    try:
        logger.info(f"Login attempt for email: {request.email}")

        result = await db.execute(select(User).filter(User.email == request.email.lower()))
        user = result.scalar_one_or_none()

        if user and verify_password(request.password, user.hashed_password):
            logger.info(f"Login successful: {user.email} ({user.role})")
            return _login_response(user)

        logger.warning(f"Failed login attempt for email: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error for {request.email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication failed"
        )


@router.post("/register-admin", response_model=LoginResponse)
async def register_admin(request: RegisterAdminRequest, db: AsyncSession = Depends(get_db)):
    """
    Register the first admin user (only if no admins exist)
    """
    try:
        logger.info(f"Admin registration attempt for email: {request.email}")

        existing_admin = await db.execute(select(User.id).filter(User.role == "admin").limit(1))
        if existing_admin.scalar_one_or_none():
            logger.warning("Admin registration attempted but admin already exists")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Admin user already exists"
            )

        existing_user = await db.execute(select(User).filter(User.email == request.email.lower()))
        if existing_user.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        new_admin = User(
            name=request.name,
            email=request.email.lower(),
            hashed_password=get_password_hash(request.password),
            role="admin"
        )
        db.add(new_admin)
        await db.commit()
        await db.refresh(new_admin)

        logger.info(f"Admin registered successfully: {new_admin.email}")
        return _login_response(new_admin)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Admin registration error for {request.email}: {e}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed"
        )


@router.get("/check-admin-exists")
async def check_admin_exists(db: AsyncSession = Depends(get_db)):
    try:
        result = await db.execute(select(User.id).filter(User.role == "admin").limit(1))
        return {"admin_exists": result.scalar_one_or_none() is not None}
    except Exception as e:
        logger.error(f"Error checking admin existence: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not check admin status"
        )


@router.post("/logout")
async def logout():
    """
    Logout endpoint (client-side token removal)
    """
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=MeResponse)
async def get_me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        user_type=user.role,
        assigned_groups=[GroupBrief.model_validate(group) for group in user.assigned_groups]
    )
