"""
Group / Student / Parent relationship maintenance.

Student.group_id and Student.parent_id are the source of truth for
Group.students and Parent.students. Group.parents is a materialized set
(group_parents) and is kept in step here: every student move, parent change
or removal re-evaluates the affected group's parent set, and parents that end
up referenced by no student and no group are deleted.

All writes are idempotent point operations (add-if-absent, conditional
remove, conditional delete), so re-running an operation converges on the
same end state.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, delete, exists, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.dialects import postgresql, sqlite

from ..core.config import settings
from ..core.errors import NotFoundError, ValidationError
from ..models.group import Group, group_parents
from ..models.student import Student
from ..models.parent import Parent
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParentName:
    first_name: str
    last_name: str
    full_name: str


@dataclass
class ParentEntry:
    email: Optional[str]
    name: Optional[str] = None


def normalize_parent_name(raw_name: Optional[str]) -> ParentName:
    placeholder = settings.default_parent_name
    cleaned = (raw_name or "").strip()
    if not cleaned:
        return ParentName(first_name=placeholder, last_name="", full_name=placeholder)

    parts = cleaned.split()
    return ParentName(first_name=parts[0], last_name=" ".join(parts[1:]), full_name=cleaned)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _insert(db: AsyncSession, table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Unsupported database dialect: {dialect}")


# Set primitives

async def ensure_parent_in_group(db: AsyncSession, group_id: Optional[int], parent_id: Optional[int]) -> None:
    if not group_id or not parent_id:
        return
    await db.flush()
    stmt = _insert(db, group_parents).values(group_id=group_id, parent_id=parent_id)
    await db.execute(stmt.on_conflict_do_nothing(index_elements=["group_id", "parent_id"]))


async def remove_parent_from_group_if_unused(db: AsyncSession, group_id: Optional[int],
                                             parent_id: Optional[int]) -> bool:
    """
    Drop parent_id from the group's parent set when no student of the group
    still has that parent. Count and removal happen in one statement.
    """
    if not group_id or not parent_id:
        return False
    await db.flush()
    still_used = exists().where(and_(Student.group_id == group_id, Student.parent_id == parent_id))
    result = await db.execute(
        delete(group_parents)
        .where(group_parents.c.group_id == group_id,
               group_parents.c.parent_id == parent_id,
               ~still_used)
    )
    removed = result.rowcount > 0
    if removed:
        logger.info(f"Removed unused parent {parent_id} from group {group_id}")
    return removed


async def delete_parent_if_orphaned(db: AsyncSession, parent_id: Optional[int]) -> bool:
    if not parent_id:
        return False
    await db.flush()
    has_students = exists().where(Student.parent_id == parent_id)
    in_group = exists().where(group_parents.c.parent_id == parent_id)
    result = await db.execute(
        delete(Parent)
        .where(Parent.id == parent_id, ~has_students, ~in_group)
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount > 0
    if deleted:
        orphan = await db.get(Parent, parent_id)
        if orphan is not None:
            db.expunge(orphan)
        logger.info(f"Deleted orphaned parent {parent_id}")
    return deleted


async def _set_group_parents(db: AsyncSession, group_id: int, parent_ids: Iterable[int]) -> None:
    wanted = set(parent_ids)
    await db.flush()
    stale = delete(group_parents).where(group_parents.c.group_id == group_id)
    if wanted:
        stale = stale.where(group_parents.c.parent_id.notin_(wanted))
    await db.execute(stale)
    for parent_id in sorted(wanted):
        await ensure_parent_in_group(db, group_id, parent_id)


async def get_group_parent_ids(db: AsyncSession, group_id: int) -> List[int]:
    await db.flush()
    result = await db.execute(
        select(group_parents.c.parent_id)
        .where(group_parents.c.group_id == group_id)
        .order_by(group_parents.c.parent_id)
    )
    return list(result.scalars().all())


# Student membership

async def detach_student_from_group(db: AsyncSession, student: Student) -> Optional[int]:
    previous_group_id = student.group_id
    if previous_group_id is None:
        return None

    student.group_id = None
    await remove_parent_from_group_if_unused(db, previous_group_id, student.parent_id)
    logger.info(f"Detached student {student.id} from group {previous_group_id}")
    return previous_group_id


async def attach_student_to_group(db: AsyncSession, student: Student, group_id: int) -> None:
    if student.group_id is not None and student.group_id != group_id:
        await detach_student_from_group(db, student)

    if student.group_id != group_id:
        student.group_id = group_id
        logger.info(f"Attached student {student.id} to group {group_id}")

    await ensure_parent_in_group(db, group_id, student.parent_id)


# Parent identity

async def resolve_or_create_parent(db: AsyncSession, email: Optional[str], raw_name: Optional[str]) -> Parent:
    normalized_email = normalize_email(email)
    if not normalized_email:
        raise ValidationError("Parent email is required")

    name = normalize_parent_name(raw_name)

    await db.flush()
    # A concurrent request creating the same email falls through to the lookup
    stmt = _insert(db, Parent.__table__).values(
        first_name=name.first_name,
        last_name=name.last_name,
        email=normalized_email,
    )
    created = await db.execute(stmt.on_conflict_do_nothing(index_elements=["email"]))

    result = await db.execute(select(Parent).filter(Parent.email == normalized_email))
    parent = result.scalar_one()
    if created.rowcount > 0:
        logger.info(f"Created parent {parent.id} for {normalized_email}")
        return parent

    if parent.first_name != name.first_name:
        parent.first_name = name.first_name
    if parent.last_name != name.last_name:
        parent.last_name = name.last_name
    return parent


async def assign_parent_to_student(db: AsyncSession, student: Student, email: Optional[str],
                                   raw_name: Optional[str]) -> Parent:
    """Link a student to the parent owning `email`, cleaning up the previous parent"""
    name = normalize_parent_name(raw_name)
    parent = await resolve_or_create_parent(db, email, raw_name)

    previous_parent_id = student.parent_id
    student.parent_id = parent.id
    student.parent_email = parent.email
    student.parent_name = name.full_name

    await ensure_parent_in_group(db, student.group_id, parent.id)

    if previous_parent_id and previous_parent_id != parent.id:
        await remove_parent_from_group_if_unused(db, student.group_id, previous_parent_id)
        await delete_parent_if_orphaned(db, previous_parent_id)

    return parent


async def remove_student(db: AsyncSession, student: Student) -> None:
    group_id = student.group_id
    parent_id = student.parent_id

    await db.delete(student)
    await db.flush()

    await remove_parent_from_group_if_unused(db, group_id, parent_id)
    await delete_parent_if_orphaned(db, parent_id)
    logger.info(f"Removed student {student.id}")


async def delete_group(db: AsyncSession, group: Group) -> None:
    """Delete a group together with its students; parents are kept unless orphaned"""
    parent_ids = set(await get_group_parent_ids(db, group.id))

    result = await db.execute(select(Student).filter(Student.group_id == group.id))
    for student in result.scalars().all():
        if student.parent_id:
            parent_ids.add(student.parent_id)
        await db.delete(student)

    await db.flush()
    await db.execute(delete(group_parents).where(group_parents.c.group_id == group.id))
    await db.delete(group)
    await db.flush()

    for parent_id in sorted(parent_ids):
        await delete_parent_if_orphaned(db, parent_id)
    logger.info(f"Deleted group {group.id}")


# Bulk roster editing

def _dedupe(ids: Sequence[int]) -> List[int]:
    seen = set()
    ordered = []
    for student_id in ids:
        if student_id and student_id not in seen:
            seen.add(student_id)
            ordered.append(student_id)
    return ordered


async def load_full_group(db: AsyncSession, group_id: int) -> Group:
    result = await db.execute(
        select(Group)
        .filter(Group.id == group_id)
        .options(
            selectinload(Group.students).selectinload(Student.parent),
            selectinload(Group.parents),
            selectinload(Group.teachers),
        )
        .execution_options(populate_existing=True)
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group not found")
    return group


async def bulk_replace_group_roster(db: AsyncSession, group: Group, requested_student_ids: Sequence[int],
                                    parent_payload: Sequence[ParentEntry]) -> Group:
    """
    Reconcile a group's students and parents to the requested end state.

    Unknown student ids and parent entries without an email are rejected
    before anything is written.
    """
    requested = _dedupe(requested_student_ids)

    students_by_id = {}
    if requested:
        result = await db.execute(select(Student).filter(Student.id.in_(requested)))
        students_by_id = {student.id: student for student in result.scalars().all()}
        if len(students_by_id) != len(requested):
            raise ValidationError("One or more students were not found")

    if any(not normalize_email(entry.email) for entry in parent_payload):
        raise ValidationError("Parent email is required for each parent entry")

    previous_parent_ids = set(await get_group_parent_ids(db, group.id))

    result = await db.execute(select(Student).filter(Student.group_id == group.id))
    current = result.scalars().all()

    requested_set = set(requested)
    for student in current:
        if student.id not in requested_set:
            await detach_student_from_group(db, student)

    for student_id in requested:
        await attach_student_to_group(db, students_by_id[student_id], group.id)

    await db.flush()
    result = await db.execute(
        select(Student.parent_id)
        .filter(Student.group_id == group.id, Student.parent_id.isnot(None))
        .distinct()
    )
    final_parent_ids = set(result.scalars().all())

    for entry in parent_payload:
        parent = await resolve_or_create_parent(db, entry.email, entry.name)
        final_parent_ids.add(parent.id)

    await _set_group_parents(db, group.id, final_parent_ids)

    for parent_id in sorted(previous_parent_ids - final_parent_ids):
        await delete_parent_if_orphaned(db, parent_id)

    logger.info(
        f"Group {group.id} roster replaced: {len(requested)} students, {len(final_parent_ids)} parents"
    )
    return await load_full_group(db, group.id)
