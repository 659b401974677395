from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base
from .group import group_teachers

ROLES = ("admin", "teacher", "student", "parent")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default="teacher")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    assigned_groups = relationship("Group", secondary=group_teachers, back_populates="teachers")

    @property
    def assigned_group_ids(self):
        return {group.id for group in self.assigned_groups}
