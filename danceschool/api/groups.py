from datetime import date
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from pydantic import Field
from typing import List, Optional
from urllib.parse import quote
from ..core.database import get_db
from ..core.auth import require_admin, get_current_user, ensure_group_access, accessible_group_ids
from ..core.errors import DanceSchoolError
from ..models.group import Group
from ..models.student import Student
from ..models.schedule import Schedule
from ..models.user import User
from ..services import roster
from ..utils.csv_export import export_group_students, export_filename
from .schemas import RequestModel, GroupResponse, GroupFullResponse, NextTraining
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class GroupCreate(RequestModel):
    name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    description: Optional[str] = None
    teacher_ids: List[int] = []


class GroupUpdate(RequestModel):
    name: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    teacher_ids: Optional[List[int]] = None


class ParentPayload(RequestModel):
    name: Optional[str] = None
    email: Optional[str] = None


class GroupBulkUpdate(RequestModel):
    name: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    student_ids: List[int] = Field(default_factory=list)
    parents: List[ParentPayload] = []


async def _next_training(db: AsyncSession, group_id: int) -> Optional[NextTraining]:
    result = await db.execute(
        select(Schedule)
        .filter(Schedule.group_id == group_id, Schedule.date >= date.today())
        .order_by(Schedule.date, Schedule.start_time)
        .limit(1)
    )
    schedule = result.scalar_one_or_none()
    if not schedule:
        return None
    return NextTraining(date=schedule.date, start_time=schedule.start_time)


async def _load_group(db: AsyncSession, group_id: int) -> Group:
    result = await db.execute(
        select(Group)
        .filter(Group.id == group_id)
        .options(selectinload(Group.students), selectinload(Group.teachers))
    )
    group = result.scalar_one_or_none()
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


async def _teachers_by_id(db: AsyncSession, teacher_ids: List[int]) -> List[User]:
    if not teacher_ids:
        return []
    result = await db.execute(select(User).filter(User.id.in_(set(teacher_ids))))
    teachers = result.scalars().all()
    if len(teachers) != len(set(teacher_ids)):
        raise HTTPException(status_code=400, detail="One or more teachers were not found")
    return list(teachers)


@router.get("/", response_model=List[GroupResponse])
async def get_groups(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        query = select(Group).options(selectinload(Group.students), selectinload(Group.teachers))
        allowed = accessible_group_ids(user)
        if allowed is not None:
            query = query.filter(Group.id.in_(allowed))

        result = await db.execute(query.order_by(Group.name))
        groups = []
        for group in result.scalars().all():
            response = GroupResponse.model_validate(group, from_attributes=True)
            groups.append(response.model_copy(update={"next_training": await _next_training(db, group.id)}))
        return groups
    except Exception as e:
        logger.error(f"Error getting groups: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving groups")


@router.get("/{group_id}/full", response_model=GroupFullResponse)
async def get_group_full(group_id: int, db: AsyncSession = Depends(get_db),
                         admin: User = Depends(require_admin)):
    try:
        return await roster.load_full_group(db, group_id)
    except DanceSchoolError:
        raise
    except Exception as e:
        logger.error(f"Error getting full group {group_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving group")


@router.get("/{group_id}", response_model=GroupFullResponse)
async def get_group(group_id: int, db: AsyncSession = Depends(get_db),
                    user: User = Depends(get_current_user)):
    try:
        # Checked before loading; reloading Group.teachers resets the caller's assigned_groups
        ensure_group_access(user, group_id)
        return await roster.load_full_group(db, group_id)
    except DanceSchoolError:
        raise
    except Exception as e:
        logger.error(f"Error getting group {group_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving group")


@router.post("/", response_model=GroupResponse, status_code=201)
async def create_group(group: GroupCreate, db: AsyncSession = Depends(get_db),
                       admin: User = Depends(require_admin)):
    try:
        # Teachers are resolved before the group joins the session
        db_group = Group(
            name=group.name.strip(),
            location=group.location.strip(),
            description=group.description,
            teachers=await _teachers_by_id(db, group.teacher_ids)
        )
        db.add(db_group)
        await db.commit()
        logger.info(f"Group {db_group.id} created by admin {admin.id}")
        return await _load_group(db, db_group.id)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating group: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error creating group")


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(group_id: int, group: GroupUpdate, db: AsyncSession = Depends(get_db),
                       admin: User = Depends(require_admin)):
    try:
        db_group = await _load_group(db, group_id)

        if group.name is not None:
            db_group.name = group.name.strip()
        if group.location is not None:
            db_group.location = group.location.strip()
        if group.description is not None:
            db_group.description = group.description
        if group.teacher_ids is not None:
            db_group.teachers = await _teachers_by_id(db, group.teacher_ids)

        await db.commit()
        return await _load_group(db, group_id)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error updating group: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating group")


@router.patch("/{group_id}/full", response_model=GroupFullResponse)
async def bulk_update_group(group_id: int, payload: GroupBulkUpdate, db: AsyncSession = Depends(get_db),
                            admin: User = Depends(require_admin)):
    try:
        result = await db.execute(select(Group).filter(Group.id == group_id))
        db_group = result.scalar_one_or_none()
        if not db_group:
            raise HTTPException(status_code=404, detail="Group not found")

        if payload.name is not None:
            db_group.name = payload.name.strip()
        if payload.location is not None:
            db_group.location = payload.location.strip()
        if payload.description is not None:
            db_group.description = payload.description

        updated = await roster.bulk_replace_group_roster(
            db,
            db_group,
            payload.student_ids,
            [roster.ParentEntry(email=p.email, name=p.name) for p in payload.parents],
        )
        await db.commit()
        return updated
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error bulk updating group {group_id}: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating group")


@router.get("/{group_id}/export-csv")
async def export_group_csv(group_id: int, db: AsyncSession = Depends(get_db),
                           admin: User = Depends(require_admin)):
    try:
        result = await db.execute(select(Group).filter(Group.id == group_id))
        group = result.scalar_one_or_none()
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")

        students = await db.execute(
            select(Student)
            .filter(Student.group_id == group_id)
            .options(selectinload(Student.parent))
            .order_by(Student.last_name, Student.first_name)
        )
        content = export_group_students(group, students.scalars().all())
        return Response(
            content=content.encode("utf-8"),
            media_type="text/csv; charset=utf-8",
            headers={
                "Content-Disposition": f"attachment; filename*=UTF-8''{quote(export_filename(group))}"
            },
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error exporting group {group_id}: {e}")
        raise HTTPException(status_code=500, detail="Error exporting group")


@router.delete("/{group_id}")
async def delete_group(group_id: int, db: AsyncSession = Depends(get_db),
                       admin: User = Depends(require_admin)):
    try:
        result = await db.execute(select(Group).filter(Group.id == group_id))
        db_group = result.scalar_one_or_none()
        if not db_group:
            raise HTTPException(status_code=404, detail="Group not found")

        await roster.delete_group(db, db_group)
        await db.commit()
        return {"success": True, "message": "Group deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting group: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error deleting group")
