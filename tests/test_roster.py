"""Group / Student / Parent relationship maintenance."""

import pytest
from sqlalchemy import select, func

from danceschool.core.errors import ValidationError
from danceschool.models import Group, Parent, Student, group_parents
from danceschool.services import roster
from danceschool.services.roster import ParentEntry


async def parent_ids_of(db, group):
    return set(await roster.get_group_parent_ids(db, group.id))


async def reload_student(db, student):
    return await db.get(Student, student.id, populate_existing=True)


async def parent_exists(db, parent_id):
    result = await db.execute(select(func.count(Parent.id)).filter(Parent.id == parent_id))
    return result.scalar() == 1


async def assert_invariants(db):
    """Every student's parent is listed on its group; no parent is orphaned."""
    students = (await db.execute(select(Student))).scalars().all()
    for student in students:
        if student.group_id and student.parent_id:
            result = await db.execute(
                select(func.count()).select_from(group_parents).where(
                    group_parents.c.group_id == student.group_id,
                    group_parents.c.parent_id == student.parent_id,
                )
            )
            assert result.scalar() == 1, f"parent of student {student.id} missing from its group"

    parents = (await db.execute(select(Parent))).scalars().all()
    for parent in parents:
        has_students = any(s.parent_id == parent.id for s in students)
        result = await db.execute(
            select(func.count()).select_from(group_parents).where(group_parents.c.parent_id == parent.id)
        )
        assert has_students or result.scalar() > 0, f"parent {parent.id} is orphaned"


class TestNormalizeParentName:
    def test_splits_on_whitespace(self):
        name = roster.normalize_parent_name("  Jüri Tamm  ")
        assert name.first_name == "Jüri"
        assert name.last_name == "Tamm"
        assert name.full_name == "Jüri Tamm"

    def test_joins_remaining_tokens(self):
        name = roster.normalize_parent_name("Mari  Liis   Kask-Saar")
        assert name.first_name == "Mari"
        assert name.last_name == "Liis Kask-Saar"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_name_uses_placeholder(self, raw):
        name = roster.normalize_parent_name(raw)
        assert name.first_name == "Lapsevanem"
        assert name.last_name == ""
        assert name.full_name == "Lapsevanem"

    def test_single_token(self):
        name = roster.normalize_parent_name("Kati")
        assert (name.first_name, name.last_name) == ("Kati", "")


class TestResolveOrCreateParent:
    async def test_same_email_resolves_to_same_parent(self, db):
        first = await roster.resolve_or_create_parent(db, "A@X.com", "Anna Aas")
        second = await roster.resolve_or_create_parent(db, "  a@x.COM ", "Anna Aas")

        assert first.id == second.id
        assert first.email == "a@x.com"
        count = await db.execute(select(func.count(Parent.id)))
        assert count.scalar() == 1

    async def test_renames_shared_record(self, db):
        parent = await roster.resolve_or_create_parent(db, "a@x.com", "Anna Aas")
        await roster.resolve_or_create_parent(db, "A@x.com", "Anna Maria Aas")
        await db.flush()

        refreshed = await db.get(Parent, parent.id, populate_existing=True)
        assert refreshed.first_name == "Anna"
        assert refreshed.last_name == "Maria Aas"

    async def test_missing_email_is_rejected(self, db):
        with pytest.raises(ValidationError):
            await roster.resolve_or_create_parent(db, "   ", "Anna")


class TestMembership:
    async def test_attach_adds_parent_to_group(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com")

        assert student.group_id == group.id
        assert await parent_ids_of(db, group) == {student.parent_id}
        await assert_invariants(db)

    async def test_move_between_groups(self, db, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        student = await make_student(group=group_a, parent_email="p@x.com")
        parent_id = student.parent_id

        await roster.attach_student_to_group(db, student, group_b.id)
        await db.flush()

        assert (await reload_student(db, student)).group_id == group_b.id
        assert await parent_ids_of(db, group_a) == set()
        assert await parent_ids_of(db, group_b) == {parent_id}
        await assert_invariants(db)

    async def test_move_keeps_parent_still_used_in_old_group(self, db, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        moving = await make_student("Mover", group=group_a, parent_email="p@x.com")
        await make_student("Sibling", group=group_a, parent_email="p@x.com")

        await roster.attach_student_to_group(db, moving, group_b.id)
        await db.flush()

        assert await parent_ids_of(db, group_a) == {moving.parent_id}
        assert await parent_ids_of(db, group_b) == {moving.parent_id}

    async def test_detach_clears_group_and_parent_reference(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com")

        previous = await roster.detach_student_from_group(db, student)
        await db.flush()

        assert previous == group.id
        assert (await reload_student(db, student)).group_id is None
        assert await parent_ids_of(db, group) == set()
        # the parent still has its student, so it is kept
        assert await parent_exists(db, student.parent_id)
        await assert_invariants(db)

    async def test_detach_without_group_is_noop(self, db, make_student):
        student = await make_student(parent_email="p@x.com")
        assert await roster.detach_student_from_group(db, student) is None

    async def test_attach_detach_sequences_keep_invariants(self, db, make_group, make_student):
        groups = [await make_group(f"G{i}") for i in range(3)]
        students = [
            await make_student(f"S{i}", group=groups[i % 3], parent_email=f"p{i % 2}@x.com")
            for i in range(5)
        ]

        moves = [(0, 1), (1, 2), (2, None), (3, 0), (4, 0), (0, 2), (2, 1), (1, None), (4, 2)]
        for student_index, group_index in moves:
            student = students[student_index]
            if group_index is None:
                await roster.detach_student_from_group(db, student)
            else:
                await roster.attach_student_to_group(db, student, groups[group_index].id)
            await db.flush()
            await assert_invariants(db)

        for group in groups:
            result = await db.execute(
                select(Student.parent_id).filter(Student.group_id == group.id).distinct()
            )
            assert await parent_ids_of(db, group) == set(result.scalars().all())


class TestParentChange:
    async def test_changing_parent_deletes_orphaned_previous_parent(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="old@x.com")
        old_parent_id = student.parent_id

        new_parent = await roster.assign_parent_to_student(db, student, "new@x.com", "Uus Vanem")
        await db.flush()

        assert student.parent_id == new_parent.id
        assert student.parent_email == "new@x.com"
        assert student.parent_name == "Uus Vanem"
        assert await parent_ids_of(db, group) == {new_parent.id}
        assert not await parent_exists(db, old_parent_id)

    async def test_remove_student_deletes_last_parent(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com")
        parent_id = student.parent_id

        await roster.remove_student(db, student)

        assert await parent_ids_of(db, group) == set()
        assert not await parent_exists(db, parent_id)

    async def test_remove_student_keeps_parent_with_siblings(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student("One", group=group, parent_email="p@x.com")
        await make_student("Two", group=group, parent_email="P@x.com")

        await roster.remove_student(db, student)

        assert await parent_ids_of(db, group) == {student.parent_id}
        assert await parent_exists(db, student.parent_id)


class TestBulkReplaceGroupRoster:
    async def test_scenario_shrinking_roster(self, db, make_group, make_student):
        group = await make_group()
        s1 = await make_student("S1", group=group, parent_email="a@x.com")
        s2 = await make_student("S2", group=group, parent_email="a@x.com")
        p1 = s1.parent_id

        updated = await roster.bulk_replace_group_roster(db, group, [s2.id], [])
        assert [s.id for s in updated.students] == [s2.id]
        assert (await reload_student(db, s1)).group_id is None
        assert await parent_ids_of(db, group) == {p1}

        updated = await roster.bulk_replace_group_roster(db, group, [], [])
        assert updated.students == []
        assert (await reload_student(db, s2)).group_id is None
        assert await parent_ids_of(db, group) == set()
        # S1 and S2 still name P1 as their parent
        assert await parent_exists(db, p1)
        await assert_invariants(db)

    async def test_moves_students_from_other_groups(self, db, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        student = await make_student(group=group_a, parent_email="p@x.com")

        updated = await roster.bulk_replace_group_roster(db, group_b, [student.id], [])

        assert [s.id for s in updated.students] == [student.id]
        assert [p.id for p in updated.parents] == [student.parent_id]
        assert await parent_ids_of(db, group_a) == set()
        await assert_invariants(db)

    async def test_payload_parents_are_resolved_and_listed(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="kid@x.com")

        updated = await roster.bulk_replace_group_roster(
            db, group, [student.id],
            [ParentEntry(email=" Extra@X.com ", name="Eva Extra"), ParentEntry(email="kid@x.com", name="Kati Kid")],
        )

        emails = sorted(p.email for p in updated.parents)
        assert emails == ["extra@x.com", "kid@x.com"]
        count = await db.execute(select(func.count(Parent.id)))
        assert count.scalar() == 2

    async def test_dropped_payload_parent_is_deleted(self, db, make_group):
        group = await make_group()
        await roster.bulk_replace_group_roster(db, group, [], [ParentEntry(email="only@x.com", name="Only")])
        parent_id = (await parent_ids_of(db, group)).pop()

        await roster.bulk_replace_group_roster(db, group, [], [])

        assert await parent_ids_of(db, group) == set()
        assert not await parent_exists(db, parent_id)

    async def test_is_idempotent(self, db, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        s1 = await make_student("S1", group=group_a, parent_email="a@x.com")
        s2 = await make_student("S2", group=group_b, parent_email="b@x.com")
        await make_student("S3", group=group_a, parent_email="c@x.com")
        payload = [ParentEntry(email="d@x.com", name="Dora")]

        async def snapshot():
            students = (await db.execute(select(Student.id, Student.group_id, Student.parent_id)
                                         .order_by(Student.id))).all()
            links = (await db.execute(select(group_parents.c.group_id, group_parents.c.parent_id)
                                      .order_by(group_parents.c.group_id, group_parents.c.parent_id))).all()
            parents = (await db.execute(select(Parent.id, Parent.email).order_by(Parent.id))).all()
            return students, links, parents

        await roster.bulk_replace_group_roster(db, group_a, [s1.id, s2.id], payload)
        first = await snapshot()
        await roster.bulk_replace_group_roster(db, group_a, [s1.id, s2.id], payload)
        second = await snapshot()

        assert first == second
        await assert_invariants(db)

    async def test_unknown_student_fails_before_writing(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com")

        with pytest.raises(ValidationError, match="students were not found"):
            await roster.bulk_replace_group_roster(db, group, [9999], [])

        assert (await reload_student(db, student)).group_id == group.id
        assert await parent_ids_of(db, group) == {student.parent_id}

    async def test_parent_without_email_fails_before_writing(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com")

        with pytest.raises(ValidationError, match="Parent email is required"):
            await roster.bulk_replace_group_roster(db, group, [], [ParentEntry(email=None, name="Nobody")])

        assert (await reload_student(db, student)).group_id == group.id

    async def test_duplicate_ids_are_collapsed(self, db, make_group, make_student):
        group = await make_group()
        student = await make_student(parent_email="p@x.com")

        updated = await roster.bulk_replace_group_roster(db, group, [student.id, student.id], [])

        assert [s.id for s in updated.students] == [student.id]


class TestDeleteGroup:
    async def test_deletes_students_and_orphaned_parents(self, db, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        only_a = await make_student("OnlyA", group=group_a, parent_email="a@x.com")
        shared = await make_student("Shared", group=group_a, parent_email="s@x.com")
        await make_student("SharedSibling", group=group_b, parent_email="s@x.com")

        await roster.delete_group(db, group_a)

        assert await db.get(Group, group_a.id) is None
        remaining = (await db.execute(select(Student.first_name))).scalars().all()
        assert remaining == ["SharedSibling"]
        assert not await parent_exists(db, only_a.parent_id)
        assert await parent_exists(db, shared.parent_id)
        await assert_invariants(db)
