from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from sqlalchemy.orm import selectinload
from pydantic import Field
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import require_admin, get_current_user, ensure_group_access, accessible_group_ids
from ..core.errors import DanceSchoolError
from ..models.group import Group
from ..models.student import Student
from ..models.user import User
from ..services import roster
from .schemas import RequestModel, StudentDetail
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class StudentCreate(RequestModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    age: int = Field(ge=0)
    group_id: int
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None


class StudentUpdate(RequestModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0)
    group_id: Optional[int] = None
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None


async def _load_student(db: AsyncSession, student_id: int) -> Student:
    result = await db.execute(
        select(Student)
        .filter(Student.id == student_id)
        .options(selectinload(Student.group), selectinload(Student.parent))
        .execution_options(populate_existing=True)
    )
    student = result.scalar_one_or_none()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


async def _require_group(db: AsyncSession, group_id: int) -> Group:
    group = await db.get(Group, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


@router.get("/", response_model=List[StudentDetail])
async def get_students(group: Optional[int] = Query(default=None), search: Optional[str] = None,
                       db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        query = select(Student).options(selectinload(Student.group), selectinload(Student.parent))

        allowed = accessible_group_ids(user)
        if allowed is not None:
            query = query.filter(Student.group_id.in_(allowed))
        if group is not None:
            query = query.filter(Student.group_id == group)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Student.first_name.ilike(pattern), Student.last_name.ilike(pattern)))

        result = await db.execute(query.order_by(Student.last_name, Student.first_name))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting students: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving students")


@router.get("/{student_id}", response_model=StudentDetail)
async def get_student(student_id: int, db: AsyncSession = Depends(get_db),
                      user: User = Depends(get_current_user)):
    try:
        student = await _load_student(db, student_id)
        ensure_group_access(user, student.group_id, "Not authorized to access this student")
        return student
    except (HTTPException, DanceSchoolError):
        raise
    except Exception as e:
        logger.error(f"Error getting student {student_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving student")


@router.post("/", response_model=StudentDetail, status_code=201)
async def create_student(student: StudentCreate, db: AsyncSession = Depends(get_db),
                         admin: User = Depends(require_admin)):
    try:
        if not roster.normalize_email(student.parent_email):
            raise HTTPException(status_code=400, detail="Parent email is required")

        await _require_group(db, student.group_id)

        db_student = Student(
            first_name=student.first_name.strip(),
            last_name=student.last_name.strip(),
            age=student.age,
            parent_email=roster.normalize_email(student.parent_email),
        )
        db.add(db_student)
        await db.flush()

        await roster.assign_parent_to_student(db, db_student, student.parent_email, student.parent_name)
        await roster.attach_student_to_group(db, db_student, student.group_id)
        await db.commit()

        logger.info(f"Student {db_student.id} enrolled into group {student.group_id}")
        return await _load_student(db, db_student.id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating student: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error creating student")


@router.put("/{student_id}", response_model=StudentDetail)
async def update_student(student_id: int, student: StudentUpdate, db: AsyncSession = Depends(get_db),
                         admin: User = Depends(require_admin)):
    try:
        db_student = await _load_student(db, student_id)

        if student.first_name is not None:
            db_student.first_name = student.first_name.strip()
        if student.last_name is not None:
            db_student.last_name = student.last_name.strip()
        if student.age is not None:
            db_student.age = student.age

        if student.group_id is not None and student.group_id != db_student.group_id:
            await _require_group(db, student.group_id)
            await roster.attach_student_to_group(db, db_student, student.group_id)

        if student.parent_email:
            await roster.assign_parent_to_student(
                db, db_student, student.parent_email, student.parent_name or db_student.parent_name
            )
        elif student.parent_name and db_student.parent_id:
            # Rename the current parent without changing identity
            await roster.assign_parent_to_student(
                db, db_student, db_student.parent_email, student.parent_name
            )

        await db.commit()
        return await _load_student(db, student_id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error updating student: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating student")


@router.delete("/{student_id}")
async def delete_student(student_id: int, db: AsyncSession = Depends(get_db),
                         admin: User = Depends(require_admin)):
    try:
        result = await db.execute(select(Student).filter(Student.id == student_id))
        db_student = result.scalar_one_or_none()
        if not db_student:
            raise HTTPException(status_code=404, detail="Student not found")

        await roster.remove_student(db, db_student)
        await db.commit()
        return {"success": True, "message": "Student deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting student: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error deleting student")
