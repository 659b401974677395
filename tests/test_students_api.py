"""HTTP tests for /api/students."""

from sqlalchemy import select

from danceschool.models import Parent, Student
from danceschool.services import roster

from conftest import auth_headers, create_user


class TestCreateStudent:
    async def test_enrolls_with_parent(self, client, db, admin_headers, make_group):
        group = await make_group()
        await db.commit()

        response = await client.post(
            "/api/students/",
            json={"first_name": "Mia", "last_name": "Tamm", "age": 5, "group_id": group.id,
                  "parent_name": "  Jüri Tamm ", "parent_email": " Juri@X.com "},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["group"]["id"] == group.id
        assert data["parent_email"] == "juri@x.com"
        assert data["parent_name"] == "Jüri Tamm"
        assert data["parent"]["first_name"] == "Jüri"
        assert set(await roster.get_group_parent_ids(db, group.id)) == {data["parent_id"]}

    async def test_accepts_camel_case_fields(self, client, db, admin_headers, make_group):
        group = await make_group()
        await db.commit()

        response = await client.post(
            "/api/students/",
            json={"firstName": "Mia", "lastName": "Tamm", "age": 5, "groupId": group.id,
                  "parentName": "Jüri Tamm", "parentEmail": "juri@x.com"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert (data["first_name"], data["last_name"]) == ("Mia", "Tamm")
        assert data["group_id"] == group.id
        assert data["parent"]["email"] == "juri@x.com"

    async def test_siblings_share_one_parent(self, client, db, admin_headers, make_group):
        group = await make_group()
        await db.commit()
        body = {"last_name": "Tamm", "age": 5, "group_id": group.id, "parent_email": "juri@x.com"}

        first = await client.post("/api/students/", json={**body, "first_name": "Mia"}, headers=admin_headers)
        second = await client.post("/api/students/", json={**body, "first_name": "Emma",
                                                            "parent_email": "JURI@x.com"}, headers=admin_headers)

        assert first.json()["parent_id"] == second.json()["parent_id"]
        count = await db.execute(select(Parent.id))
        assert len(count.scalars().all()) == 1

    async def test_parent_email_is_required(self, client, db, admin_headers, make_group):
        group = await make_group()
        await db.commit()

        response = await client.post(
            "/api/students/",
            json={"first_name": "Mia", "last_name": "Tamm", "age": 5, "group_id": group.id},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert (await db.execute(select(Student.id))).scalars().all() == []

    async def test_unknown_group(self, client, admin_headers):
        response = await client.post(
            "/api/students/",
            json={"first_name": "Mia", "last_name": "Tamm", "age": 5, "group_id": 9999,
                  "parent_email": "a@x.com"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    async def test_negative_age_is_rejected(self, client, db, admin_headers, make_group):
        group = await make_group()
        await db.commit()

        response = await client.post(
            "/api/students/",
            json={"first_name": "Mia", "last_name": "Tamm", "age": -1, "group_id": group.id,
                  "parent_email": "a@x.com"},
            headers=admin_headers,
        )
        assert response.status_code == 422


class TestUpdateStudent:
    async def test_move_to_other_group(self, client, db, admin_headers, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        student = await make_student(group=group_a, parent_email="p@x.com")
        await db.commit()

        response = await client.put(f"/api/students/{student.id}", json={"group_id": group_b.id},
                                    headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["group"]["id"] == group_b.id
        assert set(await roster.get_group_parent_ids(db, group_a.id)) == set()
        assert set(await roster.get_group_parent_ids(db, group_b.id)) == {student.parent_id}

    async def test_change_parent_email(self, client, db, admin_headers, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="old@x.com", parent_name="Vana Vanem")
        old_parent_id = student.parent_id
        await db.commit()

        response = await client.put(f"/api/students/{student.id}", json={"parent_email": "new@x.com"},
                                    headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["parent_email"] == "new@x.com"
        assert data["parent_id"] != old_parent_id
        assert await db.get(Parent, old_parent_id, populate_existing=True) is None
        assert set(await roster.get_group_parent_ids(db, group.id)) == {data["parent_id"]}

    async def test_move_with_camel_case_group_id(self, client, db, admin_headers, make_group, make_student):
        group_a = await make_group("A")
        group_b = await make_group("B")
        student = await make_student(group=group_a, parent_email="p@x.com")
        await db.commit()

        response = await client.put(f"/api/students/{student.id}", json={"groupId": group_b.id},
                                    headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["group_id"] == group_b.id

    async def test_rename_parent(self, client, db, admin_headers, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com", parent_name="Vana Nimi")
        await db.commit()

        response = await client.put(f"/api/students/{student.id}", json={"parent_name": "Uus Nimi"},
                                    headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["parent_id"] == student.parent_id
        assert response.json()["parent"]["first_name"] == "Uus"

    async def test_missing_student(self, client, admin_headers):
        response = await client.put("/api/students/9999", json={"age": 3}, headers=admin_headers)
        assert response.status_code == 404


class TestReadAndDelete:
    async def test_teacher_sees_own_groups_only(self, client, db, make_group, make_student):
        mine = await make_group("Mine")
        theirs = await make_group("Theirs")
        await make_student("Visible", group=mine, parent_email="a@x.com")
        hidden = await make_student("Hidden", group=theirs, parent_email="b@x.com")
        teacher = await create_user(db, role="teacher", groups=[mine])
        headers = auth_headers(teacher)

        response = await client.get("/api/students/", headers=headers)
        assert [s["first_name"] for s in response.json()] == ["Visible"]

        response = await client.get(f"/api/students/{hidden.id}", headers=headers)
        assert response.status_code == 403

    async def test_search_by_name(self, client, db, admin_headers, make_group, make_student):
        group = await make_group()
        await make_student("Mia", group=group, parent_email="a@x.com")
        await make_student("Oliver", group=group, parent_email="b@x.com")
        await db.commit()

        response = await client.get("/api/students/", params={"search": "oli"}, headers=admin_headers)

        assert [s["first_name"] for s in response.json()] == ["Oliver"]

    async def test_delete_cleans_up_parent(self, client, db, admin_headers, make_group, make_student):
        group = await make_group()
        student = await make_student(group=group, parent_email="p@x.com")
        parent_id = student.parent_id
        await db.commit()

        response = await client.delete(f"/api/students/{student.id}", headers=admin_headers)

        assert response.status_code == 200
        assert set(await roster.get_group_parent_ids(db, group.id)) == set()
        assert (await db.execute(select(Parent.id).filter(Parent.id == parent_id))).scalar() is None
