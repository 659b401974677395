import datetime as dt
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RequestModel(BaseModel):
    """Request bodies: camelCase as the frontend sends it, snake_case accepted too"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserBrief(ORMModel):
    id: int
    name: str
    email: str


class GroupBrief(ORMModel):
    id: int
    name: str
    location: str


class ParentBrief(ORMModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str
    phone: Optional[str] = None


class StudentBrief(ORMModel):
    id: int
    first_name: str
    last_name: str
    age: int


class StudentResponse(ORMModel):
    id: int
    first_name: str
    last_name: str
    age: int
    group_id: Optional[int] = None
    parent_id: Optional[int] = None
    parent_name: Optional[str] = None
    parent_email: str
    enrollment_date: Optional[dt.datetime] = None
    parent: Optional[ParentBrief] = None


class StudentDetail(StudentResponse):
    group: Optional[GroupBrief] = None


class ParentResponse(ParentBrief):
    students: List[StudentBrief] = []


class NextTraining(ORMModel):
    date: dt.date
    start_time: str


class GroupResponse(ORMModel):
    id: int
    name: str
    location: str
    description: Optional[str] = None
    student_count: int = 0
    teachers: List[UserBrief] = []
    next_training: Optional[NextTraining] = None


class GroupFullResponse(ORMModel):
    id: int
    name: str
    location: str
    description: Optional[str] = None
    teachers: List[UserBrief] = []
    students: List[StudentResponse] = []
    parents: List[ParentBrief] = []
