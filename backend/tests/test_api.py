import json
import unittest

from fastapi.testclient import TestClient
from sse_starlette.sse import EventSourceResponse

from crm_migrator.api.endpoints.migration import migration_progress
from crm_migrator.services.errors import MigrationConflictError, NoActiveMigrationError
from crm_migrator.services.migration_controller import get_controller
from crm_migrator.services.progress_broadcaster import EventKind, ProgressBroadcaster
from main import app


class StubController:
    def __init__(self):
        self.active = False
        self.fail_with = None

    async def start(self, workbook=None):
        if self.fail_with:
            raise self.fail_with
        if self.active:
            raise MigrationConflictError("Migration already in progress")
        self.active = True
        return {"message": "Migration started", "id": "abc123"}

    def pause(self):
        return {"message": "Pause is not supported", "supported": False}

    def abort(self):
        if not self.active:
            raise NoActiveMigrationError("No active migration")
        self.active = False
        return {"message": "Migration aborted", "id": "abc123"}

    def status(self):
        if self.active:
            return {"active": True, "message": "Migration in progress", "runId": "abc123", "run": {"status": "running"}}
        return {"active": False, "message": "No active migration"}

    async def statistics(self):
        return {
            "counts": {"organizations": 4, "contacts": 2, "opportunities": 1, "interactions": 0},
            "migrationActive": self.active,
        }


class TestMigrationApi(unittest.TestCase):
    def setUp(self):
        self.controller = StubController()
        app.dependency_overrides[get_controller] = lambda: self.controller
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "healthy"})

    def test_start_then_conflict(self):
        first = self.client.post("/api/migration", json={"action": "start"})
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), {"message": "Migration started", "id": "abc123"})

        second = self.client.post("/api/migration", json={"action": "start"})
        self.assertEqual(second.status_code, 409)

        status = self.client.post("/api/migration", json={"action": "status"}).json()
        self.assertTrue(status["active"])
        self.assertEqual(status["runId"], "abc123")

    def test_abort_without_run(self):
        response = self.client.post("/api/migration", json={"action": "abort"})
        self.assertEqual(response.status_code, 404)

    def test_pause_acknowledged_as_unsupported(self):
        response = self.client.post("/api/migration", json={"action": "pause"})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["supported"])

    def test_unknown_action(self):
        response = self.client.post("/api/migration", json={"action": "rewind"})
        self.assertEqual(response.status_code, 400)

    def test_unexpected_fault(self):
        self.controller.fail_with = RuntimeError("boom")
        response = self.client.post("/api/migration", json={"action": "start"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "Internal server error"})

    def test_statistics(self):
        response = self.client.get("/api/migration")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "counts": {"organizations": 4, "contacts": 2, "opportunities": 1, "interactions": 0},
            "migrationActive": False,
        })


class TestAnalyzeApi(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def test_analyze_csv(self):
        data = (
            "Customer export,,,\n"
            "Organization Name,Priority,Segment,Email\n"
            "Acme Foods,A,Grocery,sales@acme.com\n"
        ).encode("utf-8")
        response = self.client.post(
            "/api/migration/analyze",
            files={"file": ("Organizations.csv", data, "text/csv")},
        )
        self.assertEqual(response.status_code, 200)
        sheet = response.json()["sheets"][0]
        self.assertEqual(sheet["name"], "Organizations")
        self.assertEqual(sheet["entity"], "organizations")
        self.assertEqual(sheet["headerRowIndex"], 1)
        self.assertEqual(sheet["dataStartRow"], 2)
        targets = {s["targetField"] for s in sheet["suggestions"]}
        self.assertTrue({"name", "priority", "segment", "email"} <= targets)
        self.assertEqual(sheet["integrity"]["checkedRows"], 1)
        self.assertEqual(sheet["integrity"]["issueCount"], 0)

    def test_analyze_rejects_other_files(self):
        response = self.client.post(
            "/api/migration/analyze",
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        self.assertEqual(response.status_code, 400)


class StubRequest:
    def __init__(self, disconnected=False):
        self.disconnected = disconnected

    async def is_disconnected(self):
        return self.disconnected


class TestProgressStream(unittest.IsolatedAsyncioTestCase):
    async def test_stream_sends_connected_then_published_events(self):
        broadcaster = ProgressBroadcaster(ping_interval_s=60, queue_size=10)
        response = await migration_progress(StubRequest(), broadcaster)
        self.assertIsInstance(response, EventSourceResponse)
        self.assertEqual(broadcaster.observer_count, 1)

        stream = response.body_iterator
        first = await stream.__anext__()
        self.assertEqual(first.event, "connected")

        broadcaster.publish(EventKind.PROGRESS, {"runId": "abc123", "processed": 1})
        second = await stream.__anext__()
        self.assertEqual(second.event, "progress")
        payload = json.loads(second.data)
        self.assertEqual(payload["processed"], 1)
        self.assertIn("timestamp", payload)

        await stream.aclose()
        self.assertEqual(broadcaster.observer_count, 0)

    async def test_disconnected_client_is_deregistered(self):
        broadcaster = ProgressBroadcaster(ping_interval_s=60, queue_size=10)
        response = await migration_progress(StubRequest(disconnected=True), broadcaster)

        with self.assertRaises(StopAsyncIteration):
            await response.body_iterator.__anext__()
        self.assertEqual(broadcaster.observer_count, 0)
        self.assertEqual(broadcaster.publish(EventKind.PROGRESS, {}), 0)


if __name__ == "__main__":
    unittest.main()
