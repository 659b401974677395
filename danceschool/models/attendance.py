from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("schedule_id", "student_id", name="uq_attendance_schedule_student"),)

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    present = Column(Boolean, default=False, nullable=False)
    notes = Column(String)
    marked_at = Column(DateTime(timezone=True), server_default=func.now())
    marked_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))

    schedule = relationship("Schedule", back_populates="attendance")
    student = relationship("Student", back_populates="attendance")
