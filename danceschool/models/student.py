from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (CheckConstraint("age >= 0", name="ck_students_age_non_negative"),)

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    age = Column(Integer, nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="SET NULL"), index=True)
    parent_id = Column(Integer, ForeignKey("parents.id", ondelete="SET NULL"), index=True)
    parent_name = Column(String)
    parent_email = Column(String, nullable=False)
    enrollment_date = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    group = relationship("Group", back_populates="students")
    parent = relationship("Parent", back_populates="students")
    attendance = relationship("Attendance", back_populates="student", cascade="all, delete-orphan")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"
