import datetime as dt
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from pydantic import Field
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import require_admin, require_staff, get_current_user, ensure_group_access
from ..core.errors import DanceSchoolError
from ..models.group import Group
from ..models.schedule import Schedule
from ..models.attendance import Attendance
from ..models.student import Student
from ..models.user import User
from ..utils.schedule_generator import weekly_training_dates
from .schemas import ORMModel, RequestModel, GroupBrief, StudentBrief
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class ScheduleCreate(RequestModel):
    group_id: int
    title: str
    date: dt.date
    start_time: str
    end_time: str
    location: Optional[str] = None


class ScheduleUpdate(RequestModel):
    title: Optional[str] = None
    date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None


class BulkScheduleCreate(RequestModel):
    group_id: int
    start_date: dt.date
    end_date: dt.date
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    location: Optional[str] = None
    title: Optional[str] = None


class ScheduleResponse(ORMModel):
    id: int
    group_id: int
    title: str
    date: dt.date
    start_time: str
    end_time: str
    location: Optional[str] = None
    group: Optional[GroupBrief] = None


class BulkScheduleResponse(ORMModel):
    data: List[ScheduleResponse]
    message: str


class AttendanceMark(RequestModel):
    student_id: int
    present: bool = False
    notes: Optional[str] = None


class AttendanceResponse(ORMModel):
    id: int
    schedule_id: int
    student_id: int
    present: bool
    notes: Optional[str] = None
    marked_at: Optional[dt.datetime] = None
    marked_by: Optional[int] = None
    student: Optional[StudentBrief] = None


class StudentAttendance(ORMModel):
    student: StudentBrief
    total_lessons: int
    attended: int
    records: List[AttendanceResponse]


class GroupAttendanceResponse(ORMModel):
    schedules: List[ScheduleResponse]
    attendance_by_student: List[StudentAttendance]


async def _load_schedule(db: AsyncSession, schedule_id: int) -> Schedule:
    result = await db.execute(
        select(Schedule)
        .filter(Schedule.id == schedule_id)
        .options(selectinload(Schedule.group))
        .execution_options(populate_existing=True)
    )
    schedule = result.scalar_one_or_none()
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.get("/", response_model=List[ScheduleResponse])
async def get_schedules(group_id: Optional[int] = Query(default=None, alias="groupId"),
                        start_date: Optional[dt.date] = Query(default=None, alias="startDate"),
                        end_date: Optional[dt.date] = Query(default=None, alias="endDate"),
                        db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        query = select(Schedule).options(selectinload(Schedule.group))
        if group_id is not None:
            query = query.filter(Schedule.group_id == group_id)
        if start_date and end_date:
            query = query.filter(Schedule.date >= start_date, Schedule.date <= end_date)

        result = await db.execute(query.order_by(Schedule.date, Schedule.start_time))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting schedules: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving schedules")


@router.post("/generate-bulk", response_model=BulkScheduleResponse, status_code=201)
async def generate_bulk_schedules(payload: BulkScheduleCreate, db: AsyncSession = Depends(get_db),
                                  admin: User = Depends(require_admin)):
    try:
        group = await db.get(Group, payload.group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        if payload.end_date < payload.start_date:
            raise HTTPException(status_code=400, detail="End date must not be before start date")

        schedules = [
            Schedule(
                group_id=group.id,
                title=payload.title or f"{group.name} - Trenn",
                date=training_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                location=payload.location or group.location,
            )
            for training_date in weekly_training_dates(payload.start_date, payload.end_date, payload.day_of_week)
        ]
        db.add_all(schedules)
        await db.commit()
        logger.info(f"Generated {len(schedules)} schedules for group {group.id}")

        result = await db.execute(
            select(Schedule)
            .filter(Schedule.id.in_([s.id for s in schedules]))
            .options(selectinload(Schedule.group))
            .order_by(Schedule.date)
        )
        return BulkScheduleResponse(
            data=result.scalars().all(),
            message=f"{len(schedules)} trenni loodud"
        )
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error generating schedules: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error generating schedules")


@router.get("/group/{group_id}/attendance", response_model=GroupAttendanceResponse)
async def get_group_attendance(group_id: int,
                               start_date: Optional[dt.date] = Query(default=None, alias="startDate"),
                               end_date: Optional[dt.date] = Query(default=None, alias="endDate"),
                               db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    try:
        group = await db.get(Group, group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        ensure_group_access(user, group_id)

        query = select(Schedule).filter(Schedule.group_id == group_id)
        if start_date and end_date:
            query = query.filter(Schedule.date >= start_date, Schedule.date <= end_date)
        schedules = (await db.execute(
            query.options(selectinload(Schedule.group)).order_by(Schedule.date)
        )).scalars().all()

        students = (await db.execute(
            select(Student).filter(Student.group_id == group_id).order_by(Student.last_name, Student.first_name)
        )).scalars().all()

        records = []
        if schedules:
            records = (await db.execute(
                select(Attendance)
                .filter(Attendance.schedule_id.in_([s.id for s in schedules]))
                .options(selectinload(Attendance.student))
            )).scalars().all()

        by_student = {
            student.id: StudentAttendance(student=student, total_lessons=len(schedules), attended=0, records=[])
            for student in students
        }
        for record in records:
            summary = by_student.get(record.student_id)
            if summary is None:
                continue
            summary.records.append(AttendanceResponse.model_validate(record, from_attributes=True))
            if record.present:
                summary.attended += 1

        return GroupAttendanceResponse(schedules=schedules, attendance_by_student=list(by_student.values()))
    except (HTTPException, DanceSchoolError):
        raise
    except Exception as e:
        logger.error(f"Error getting attendance for group {group_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving attendance")


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(schedule_id: int, db: AsyncSession = Depends(get_db),
                       user: User = Depends(get_current_user)):
    try:
        return await _load_schedule(db, schedule_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting schedule {schedule_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving schedule")


@router.post("/", response_model=ScheduleResponse, status_code=201)
async def create_schedule(schedule: ScheduleCreate, db: AsyncSession = Depends(get_db),
                          user: User = Depends(require_staff)):
    try:
        group = await db.get(Group, schedule.group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        ensure_group_access(user, group.id)

        db_schedule = Schedule(**schedule.model_dump())
        db.add(db_schedule)
        await db.commit()
        return await _load_schedule(db, db_schedule.id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating schedule: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error creating schedule")


@router.put("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(schedule_id: int, schedule: ScheduleUpdate, db: AsyncSession = Depends(get_db),
                          user: User = Depends(require_staff)):
    try:
        db_schedule = await _load_schedule(db, schedule_id)
        ensure_group_access(user, db_schedule.group_id)

        for field, value in schedule.model_dump(exclude_unset=True).items():
            setattr(db_schedule, field, value)

        await db.commit()
        return await _load_schedule(db, schedule_id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error updating schedule: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating schedule")


@router.delete("/{schedule_id}")
async def delete_schedule(schedule_id: int, db: AsyncSession = Depends(get_db),
                          user: User = Depends(require_staff)):
    try:
        db_schedule = await _load_schedule(db, schedule_id)
        ensure_group_access(user, db_schedule.group_id)

        # Attendance rows go with the schedule (delete-orphan cascade)
        await db.delete(db_schedule)
        await db.commit()
        return {"success": True, "message": "Schedule deleted successfully"}
    except (HTTPException, DanceSchoolError):
        raise
    except Exception as e:
        logger.error(f"Error deleting schedule: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error deleting schedule")


@router.post("/{schedule_id}/attendance", response_model=AttendanceResponse)
async def mark_attendance(schedule_id: int, mark: AttendanceMark, db: AsyncSession = Depends(get_db),
                          user: User = Depends(require_staff)):
    try:
        db_schedule = await _load_schedule(db, schedule_id)
        ensure_group_access(user, db_schedule.group_id)

        student = await db.get(Student, mark.student_id)
        if not student:
            raise HTTPException(status_code=404, detail="Student not found")

        result = await db.execute(
            select(Attendance).filter(Attendance.schedule_id == schedule_id,
                                      Attendance.student_id == mark.student_id)
        )
        attendance = result.scalar_one_or_none()
        if attendance is None:
            attendance = Attendance(schedule_id=schedule_id, student_id=mark.student_id)
            db.add(attendance)

        attendance.present = mark.present
        attendance.notes = mark.notes
        attendance.marked_by = user.id
        attendance.marked_at = dt.datetime.now(dt.timezone.utc)
        await db.commit()

        result = await db.execute(
            select(Attendance)
            .filter(Attendance.id == attendance.id)
            .options(selectinload(Attendance.student))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error marking attendance: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error marking attendance")
