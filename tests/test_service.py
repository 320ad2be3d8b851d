"""End-to-end tests for the task board HTTP API."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from taskboard.config import Settings
from taskboard.errors import NotFoundError
from taskboard.service import create_app
from taskboard.tasks import TaskLedger

PASSWORD = "SuperSecret123!"


class TaskboardServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        root = Path(self._tempdir.name)
        self.settings = Settings(
            database_path=root / "taskboard.sqlite3",
            upload_dir=root / "uploads",
            secret="tests-secret-key",
        )
        self.app = create_app(settings=self.settings)
        self.client = TestClient(self.app)

    def tearDown(self) -> None:
        self._tempdir.cleanup()

    def _register(self, username: str) -> dict:
        response = self.client.post(
            "/users/register",
            json={"username": username, "email": f"{username}@example.com", "password": PASSWORD},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def _login(self, username: str) -> dict[str, str]:
        response = self.client.post(
            "/users/login",
            json={"email": f"{username}@example.com", "password": PASSWORD},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def test_healthcheck(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_requires_bearer_token(self) -> None:
        response = self.client.get("/tasks")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "UNAUTHENTICATED")

        response = self.client.get("/tasks", headers={"Authorization": "Bearer nonsense"})
        self.assertEqual(response.status_code, 401)

    def test_register_validation_and_conflicts(self) -> None:
        bad = self.client.post(
            "/users/register",
            json={"username": "al", "email": "al@example.com", "password": PASSWORD},
        )
        self.assertEqual(bad.status_code, 422)

        self._register("alice")
        duplicate = self.client.post(
            "/users/register",
            json={"username": "alice2", "email": "ALICE@example.com", "password": PASSWORD},
        )
        self.assertEqual(duplicate.status_code, 409)

        wrong = self.client.post(
            "/users/login",
            json={"email": "alice@example.com", "password": "not-the-password"},
        )
        self.assertEqual(wrong.status_code, 401)

        unknown = self.client.post(
            "/users/login",
            json={"email": "nobody@example.com", "password": PASSWORD},
        )
        self.assertEqual(unknown.status_code, 404)

    def test_group_and_task_scenario(self) -> None:
        alice = self._register("alice")
        bob = self._register("bob")
        alice_auth = self._login("alice")
        bob_auth = self._login("bob")

        available = self.client.get("/users/available", headers=alice_auth)
        self.assertEqual({user["id"] for user in available.json()}, {alice["id"], bob["id"]})

        created = self.client.post(
            "/groups",
            headers=alice_auth,
            json={"name": "Alpha", "member_ids": [alice["id"], bob["id"]]},
        )
        self.assertEqual(created.status_code, 201, created.text)
        alpha = created.json()
        self.assertEqual([member["username"] for member in alpha["members"]], ["alice", "bob"])

        me = self.client.get("/users/me", headers=bob_auth).json()
        self.assertEqual(me["group_id"], alpha["id"])
        self.assertEqual(me["group"]["name"], "Alpha")

        task = self.client.post("/tasks", headers=bob_auth, json={"title": "Write report"})
        self.assertEqual(task.status_code, 201, task.text)
        self.assertEqual(task.json()["status"], "To Do")
        self.assertEqual(task.json()["group_id"], alpha["id"])

        listing = self.client.get("/tasks", headers=alice_auth)
        self.assertEqual(listing.status_code, 200, listing.text)
        tasks = listing.json()
        self.assertEqual(len(tasks), 1)
        self.assertEqual(tasks[0]["title"], "Write report")
        self.assertEqual(
            tasks[0]["created_by"],
            {"id": bob["id"], "username": "bob", "email": "bob@example.com"},
        )

    def test_group_membership_endpoints(self) -> None:
        alice = self._register("alice")
        bob = self._register("bob")
        carol = self._register("carol")
        alice_auth = self._login("alice")
        carol_auth = self._login("carol")

        group = self.client.post(
            "/groups", headers=alice_auth, json={"name": "Alpha", "member_ids": [alice["id"]]}
        ).json()

        conflict = self.client.post(
            "/groups", headers=alice_auth, json={"name": "Beta", "member_ids": [alice["id"], bob["id"]]}
        )
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["details"]["existing_members"], [alice["id"]])

        joined = self.client.post(f"/groups/{group['id']}/join", headers=carol_auth)
        self.assertEqual(joined.status_code, 200, joined.text)
        again = self.client.post(f"/groups/{group['id']}/join", headers=carol_auth)
        self.assertEqual(again.status_code, 409)
        missing = self.client.post("/groups/9999/join", headers=self._login("bob"))
        self.assertEqual(missing.status_code, 404)

        members = self.client.get(f"/groups/{group['id']}/members", headers=alice_auth).json()
        self.assertEqual([member["id"] for member in members], [alice["id"], carol["id"]])

        renamed = self.client.patch(
            f"/groups/{group['id']}",
            headers=alice_auth,
            json={"name": "Alpha Prime", "add_members": [bob["id"], carol["id"]]},
        )
        self.assertEqual(renamed.status_code, 200, renamed.text)
        payload = renamed.json()
        self.assertFalse(payload["deleted"])
        self.assertEqual(payload["group"]["name"], "Alpha Prime")
        self.assertEqual(payload["skipped_members"], [carol["id"]])

        left = self.client.post("/groups/leave", headers=carol_auth)
        self.assertEqual(left.status_code, 200, left.text)
        self.assertEqual(left.json()["message"], "You have left the group")
        not_in_group = self.client.post("/groups/leave", headers=carol_auth)
        self.assertEqual(not_in_group.status_code, 400)
        self.assertEqual(not_in_group.json()["code"], "INVALID_STATE")

        dissolved = self.client.patch(
            f"/groups/{group['id']}",
            headers=alice_auth,
            json={"remove_members": [alice["id"], bob["id"]]},
        )
        self.assertEqual(dissolved.status_code, 200, dissolved.text)
        self.assertTrue(dissolved.json()["deleted"])
        self.assertIsNone(dissolved.json()["group"])

        gone = self.client.get(f"/groups/{group['id']}", headers=alice_auth)
        self.assertEqual(gone.status_code, 404)
        self.assertEqual(self.client.get("/groups", headers=alice_auth).json(), [])

    def test_task_lifecycle_and_errors(self) -> None:
        alice = self._register("alice")
        outsider = self._register("outsider")
        alice_auth = self._login("alice")
        outsider_auth = self._login("outsider")

        forbidden = self.client.get("/tasks", headers=outsider_auth)
        self.assertEqual(forbidden.status_code, 403)
        no_group = self.client.post("/tasks", headers=outsider_auth, json={"title": "Nope"})
        self.assertEqual(no_group.status_code, 400)

        self.client.post("/groups", headers=alice_auth, json={"name": "Alpha", "member_ids": [alice["id"]]})
        created = self.client.post(
            "/tasks",
            headers=alice_auth,
            json={
                "title": "Plan release",
                "description": "Collect changes",
                "status": "In Progress",
                "due_date": "2030-01-15T12:00:00",
                "assigned_to": outsider["id"],
            },
        )
        self.assertEqual(created.status_code, 201, created.text)
        task = created.json()
        self.assertEqual(task["assigned_to"]["username"], "outsider")

        fetched = self.client.get(f"/tasks/{task['id']}", headers=alice_auth)
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.json(), task)

        hidden = self.client.get(f"/tasks/{task['id']}", headers=outsider_auth)
        self.assertEqual(hidden.status_code, 403)

        bogus = self.client.put(f"/tasks/{task['id']}", headers=alice_auth, json={"status": "Bogus"})
        self.assertEqual(bogus.status_code, 422)
        self.assertEqual(
            self.client.get(f"/tasks/{task['id']}", headers=alice_auth).json()["status"],
            "In Progress",
        )

        updated = self.client.put(
            f"/tasks/{task['id']}", headers=alice_auth, json={"status": "Done", "assigned_to": None}
        )
        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["status"], "Done")
        self.assertIsNone(updated.json()["assigned_to"])
        self.assertEqual(updated.json()["title"], "Plan release")

        missing = self.client.put("/tasks/9999", headers=alice_auth, json={"title": "Ghost"})
        self.assertEqual(missing.status_code, 404)

        deleted = self.client.delete(f"/tasks/{task['id']}", headers=alice_auth)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.delete(f"/tasks/{task['id']}", headers=alice_auth).status_code, 404)

    def test_attachment_upload_is_stored_and_served(self) -> None:
        alice = self._register("alice")
        auth = self._login("alice")
        self.client.post("/groups", headers=auth, json={"name": "Alpha", "member_ids": [alice["id"]]})
        task = self.client.post("/tasks", headers=auth, json={"title": "Attach"}).json()

        upload = self.client.post(
            f"/tasks/upload/{task['id']}",
            headers=auth,
            files={"file": ("notes.txt", b"hello attachments", "text/plain")},
        )
        self.assertEqual(upload.status_code, 200, upload.text)
        file_path = upload.json()["file_path"]
        self.assertTrue(file_path.startswith("/uploads/"))
        self.assertEqual(upload.json()["task"]["attachments"], [file_path])

        served = self.client.get(file_path)
        self.assertEqual(served.status_code, 200)
        self.assertEqual(served.content, b"hello attachments")

        missing = self.client.post(
            "/tasks/upload/9999",
            headers=auth,
            files={"file": ("notes.txt", b"x", "text/plain")},
        )
        self.assertEqual(missing.status_code, 404)

    def test_failed_attachment_record_removes_stored_file(self) -> None:
        alice = self._register("alice")
        auth = self._login("alice")
        self.client.post("/groups", headers=auth, json={"name": "Alpha", "member_ids": [alice["id"]]})
        task = self.client.post("/tasks", headers=auth, json={"title": "Vanishing"}).json()

        with mock.patch.object(
            TaskLedger, "add_attachment", side_effect=NotFoundError("Task not found")
        ):
            upload = self.client.post(
                f"/tasks/upload/{task['id']}",
                headers=auth,
                files={"file": ("notes.txt", b"dropped", "text/plain")},
            )

        self.assertEqual(upload.status_code, 404)
        self.assertEqual(list(self.settings.upload_dir.iterdir()), [])

    def test_me_with_affiliation_to_dissolved_group(self) -> None:
        alice = self._register("alice")
        auth = self._login("alice")
        board = self.app.state.board
        board.identity.set_affiliation(alice["id"], 4242)

        response = self.client.get("/users/me", headers=auth)

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["group_id"], 4242)
        self.assertIsNone(response.json()["group"])

    def test_group_responses_list_members(self) -> None:
        alice = self._register("alice")
        bob = self._register("bob")
        alice_auth = self._login("alice")
        group = self.client.post(
            "/groups", headers=alice_auth, json={"name": "Alpha", "member_ids": [alice["id"]]}
        ).json()

        joined = self.client.post(f"/groups/{group['id']}/join", headers=self._login("bob"))
        self.assertEqual([member["id"] for member in joined.json()["members"]], [alice["id"], bob["id"]])

        fetched = self.client.get(f"/groups/{group['id']}", headers=alice_auth).json()
        self.assertEqual(fetched, joined.json())

        left = self.client.post("/groups/leave", headers=alice_auth).json()
        self.assertEqual([member["username"] for member in left["group"]["members"]], ["bob"])

    def test_orphaned_tasks_after_group_dissolves(self) -> None:
        alice = self._register("alice")
        auth = self._login("alice")
        self.client.post("/groups", headers=auth, json={"name": "Alpha", "member_ids": [alice["id"]]})
        task = self.client.post("/tasks", headers=auth, json={"title": "Remains"}).json()

        left = self.client.post("/groups/leave", headers=auth)
        self.assertTrue(left.json()["deleted"])

        orphaned = self.client.get("/tasks/orphaned", headers=auth)
        self.assertEqual(orphaned.status_code, 200, orphaned.text)
        self.assertEqual([item["id"] for item in orphaned.json()], [task["id"]])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
