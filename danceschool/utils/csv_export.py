import csv
import io
from typing import Iterable

from ..models.group import Group
from ..models.student import Student

BOM = "\ufeff"

HEADER = [
    "Grupi nimi",
    "Õpilase nimi",
    "Õpilase vanus",
    "Lapsevanema nimi",
    "Lapsevanema e-post",
    "Telefon",
]


def _student_row(group: Group, student: Student):
    parent = student.parent
    parent_name = student.parent_name or (parent.full_name if parent else "")
    parent_email = student.parent_email or (parent.email if parent else "")
    return [
        group.name or "",
        student.full_name,
        student.age if student.age is not None else "",
        parent_name,
        parent_email,
        (parent.phone if parent else None) or "",
    ]


def export_group_students(group: Group, students: Iterable[Student]) -> str:
    """Group roster as CSV text, prefixed with a UTF-8 BOM so spreadsheets read Estonian characters"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(HEADER)
    for student in students:
        writer.writerow(_student_row(group, student))
    return BOM + buffer.getvalue()


def export_filename(group: Group) -> str:
    return f"{group.name}_opilased.csv"
