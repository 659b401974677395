from .group import Group, group_teachers, group_parents
from .user import User, ROLES
from .student import Student
from .parent import Parent
from .schedule import Schedule
from .attendance import Attendance
from .update import Update, Comment

__all__ = [
    "User",
    "ROLES",
    "Group",
    "group_teachers",
    "group_parents",
    "Student",
    "Parent",
    "Schedule",
    "Attendance",
    "Update",
    "Comment"
]
