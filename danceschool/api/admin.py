from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_
from sqlalchemy.orm import selectinload
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional, Literal
from ..core.database import get_db
from ..core.auth import get_password_hash, require_admin
from ..core.errors import DanceSchoolError
from ..models.user import User
from ..models.group import Group, group_parents
from ..models.student import Student
from ..models.parent import Parent
from ..services import roster
from .schemas import RequestModel, GroupBrief, ParentResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter()

Role = Literal["admin", "teacher", "student", "parent"]


class UserCreate(RequestModel):
    name: str
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = "teacher"
    assigned_group_ids: List[int] = []


class UserUpdate(RequestModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[Role] = None
    assigned_group_ids: Optional[List[int]] = None


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str
    assigned_groups: List[GroupBrief] = []


class ParentCreate(RequestModel):
    name: Optional[str] = None
    email: str
    phone: Optional[str] = None


class ParentUpdate(RequestModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class StatsResponse(BaseModel):
    total_groups: int
    total_students: int
    total_parents: int
    total_teachers: int


async def _load_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(
        select(User)
        .filter(User.id == user_id)
        .options(selectinload(User.assigned_groups))
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _load_parent(db: AsyncSession, parent_id: int) -> Parent:
    result = await db.execute(
        select(Parent)
        .filter(Parent.id == parent_id)
        .options(selectinload(Parent.students))
        .execution_options(populate_existing=True)
    )
    parent = result.scalar_one_or_none()
    if not parent:
        raise HTTPException(status_code=404, detail="Parent not found")
    return parent


async def _groups_by_id(db: AsyncSession, group_ids: List[int]) -> List[Group]:
    if not group_ids:
        return []
    result = await db.execute(select(Group).filter(Group.id.in_(set(group_ids))))
    groups = result.scalars().all()
    if len(groups) != len(set(group_ids)):
        raise HTTPException(status_code=400, detail="One or more groups were not found")
    return list(groups)


# Users
@router.get("/users", response_model=List[UserResponse])
async def get_users(db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        result = await db.execute(
            select(User).options(selectinload(User.assigned_groups)).order_by(User.name)
        )
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting users: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving users")


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(user: UserCreate, db: AsyncSession = Depends(get_db),
                      admin: User = Depends(require_admin)):
    try:
        email = user.email.lower()
        existing = await db.execute(select(User).filter(User.email == email))
        if existing.scalar_one_or_none():
            raise HTTPException(status_code=400, detail="Email already registered")

        db_user = User(
            name=user.name,
            email=email,
            hashed_password=get_password_hash(user.password),
            role=user.role,
        )
        db_user.assigned_groups = await _groups_by_id(db, user.assigned_group_ids)
        db.add(db_user)
        await db.commit()
        logger.info(f"User {db_user.email} created with role {db_user.role}")
        return await _load_user(db, db_user.id)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating user: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error creating user")


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, user: UserUpdate, db: AsyncSession = Depends(get_db),
                      admin: User = Depends(require_admin)):
    try:
        db_user = await _load_user(db, user_id)

        if user.email is not None and user.email.lower() != db_user.email:
            existing = await db.execute(select(User).filter(User.email == user.email.lower()))
            if existing.scalar_one_or_none():
                raise HTTPException(status_code=400, detail="Email already registered")
            db_user.email = user.email.lower()
        if user.name:
            db_user.name = user.name
        if user.password:
            db_user.hashed_password = get_password_hash(user.password)
        if user.role:
            db_user.role = user.role
        if user.assigned_group_ids is not None:
            db_user.assigned_groups = await _groups_by_id(db, user.assigned_group_ids)

        await db.commit()
        return await _load_user(db, user_id)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error updating user: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating user")


# Parents
@router.get("/parents", response_model=List[ParentResponse])
async def get_parents(search: Optional[str] = None, db: AsyncSession = Depends(get_db),
                      admin: User = Depends(require_admin)):
    try:
        query = select(Parent).options(selectinload(Parent.students))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Parent.first_name.ilike(pattern),
                Parent.last_name.ilike(pattern),
                Parent.email.ilike(pattern),
            ))
        result = await db.execute(query.order_by(Parent.last_name, Parent.first_name))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting parents: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving parents")


@router.post("/parents", response_model=ParentResponse, status_code=201)
async def create_parent(parent: ParentCreate, db: AsyncSession = Depends(get_db),
                        admin: User = Depends(require_admin)):
    try:
        db_parent = await roster.resolve_or_create_parent(db, parent.email, parent.name)
        if parent.phone is not None:
            db_parent.phone = parent.phone
        await db.commit()
        return await _load_parent(db, db_parent.id)
    except DanceSchoolError:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating parent: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error creating parent")


@router.put("/parents/{parent_id}", response_model=ParentResponse)
async def update_parent(parent_id: int, parent: ParentUpdate, db: AsyncSession = Depends(get_db),
                        admin: User = Depends(require_admin)):
    try:
        db_parent = await _load_parent(db, parent_id)

        if parent.first_name is not None:
            db_parent.first_name = parent.first_name.strip()
        if parent.last_name is not None:
            db_parent.last_name = parent.last_name.strip()
        if parent.phone is not None:
            db_parent.phone = parent.phone.strip()

        await db.commit()
        return await _load_parent(db, parent_id)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error updating parent: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating parent")


@router.delete("/parents/{parent_id}")
async def delete_parent(parent_id: int, db: AsyncSession = Depends(get_db),
                        admin: User = Depends(require_admin)):
    try:
        db_parent = await _load_parent(db, parent_id)
        if db_parent.students:
            raise HTTPException(status_code=400, detail="Cannot delete parent with associated students")

        await db.execute(delete(group_parents).where(group_parents.c.parent_id == parent_id))
        await db.delete(db_parent)
        await db.commit()
        return {"success": True, "message": "Parent deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting parent: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error deleting parent")


@router.get("/stats", response_model=StatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        groups_count = await db.execute(select(func.count(Group.id)))
        students_count = await db.execute(select(func.count(Student.id)))
        parents_count = await db.execute(select(func.count(Parent.id)))
        teachers_count = await db.execute(select(func.count(User.id)).filter(User.role == "teacher"))

        return StatsResponse(
            total_groups=groups_count.scalar() or 0,
            total_students=students_count.scalar() or 0,
            total_parents=parents_count.scalar() or 0,
            total_teachers=teachers_count.scalar() or 0
        )
    except Exception as e:
        logger.error(f"Error getting stats: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving statistics")
