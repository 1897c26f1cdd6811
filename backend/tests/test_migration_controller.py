import asyncio
import unittest


from crm_migrator.services.cells import to_cell
from crm_migrator.services.errors import MigrationConflictError, NoActiveMigrationError
from crm_migrator.services.mapping_advisor import TargetEntity
from crm_migrator.services.migration_controller import MigrationController
from crm_migrator.services.migration_executor import RunStatus
from crm_migrator.services.progress_broadcaster import ProgressBroadcaster
from crm_migrator.services.workbook_reader import SheetMatrix, Workbook


def _workbook(count=3):
    rows = [["Organization Name", "Priority", "Segment"]]
    rows += [[f"Org {i}", "B", "Retail"] for i in range(count)]
    return Workbook(name="crm.xlsx", sheets=[SheetMatrix(name="Organizations", rows=[[to_cell(v) for v in r] for r in rows])])


class GatedStore:
    """Blocks every write until the test opens the gate."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.writes = 0

    async def create(self, entity, record):
        await self.gate.wait()
        self.writes += 1
        return True

    async def count(self, entity):
        return self.writes if entity == TargetEntity.ORGANIZATIONS else 0

    async def counts(self):
        return {e.value: await self.count(e) for e in TargetEntity}


class TestMigrationController(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = GatedStore()
        self.broadcaster = ProgressBroadcaster(ping_interval_s=60, queue_size=100)
        self.controller = MigrationController(self.store, self.broadcaster)

    async def asyncTearDown(self):
        self.store.gate.set()
        await self.controller.shutdown()

    async def test_simultaneous_starts_admit_one_run(self):
        results = await asyncio.gather(
            self.controller.start(_workbook()),
            self.controller.start(_workbook()),
            return_exceptions=True,
        )
        started = [r for r in results if isinstance(r, dict)]
        conflicts = [r for r in results if isinstance(r, MigrationConflictError)]
        self.assertEqual(len(started), 1)
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(self.controller.status()["runId"], started[0]["id"])

    async def test_start_while_active_leaves_run_untouched(self):
        started = await self.controller.start(_workbook())
        await asyncio.sleep(0)
        status = self.controller.status()
        self.assertTrue(status["active"])
        before = status["run"]["counters"]

        with self.assertRaises(MigrationConflictError):
            await self.controller.start(_workbook())

        after = self.controller.status()
        self.assertEqual(after["runId"], started["id"])
        self.assertEqual(after["run"]["counters"], before)

    async def test_run_leaves_registry_when_finished(self):
        self.store.gate.set()
        started = await self.controller.start(_workbook(3))
        await self.controller.wait()

        status = self.controller.status()
        self.assertFalse(status["active"])
        self.assertEqual(status["lastRun"]["id"], started["id"])
        self.assertEqual(status["lastRun"]["status"], RunStatus.COMPLETED.value)
        stats = await self.controller.statistics()
        self.assertEqual(stats, {
            "counts": {"organizations": 3, "contacts": 0, "opportunities": 0, "interactions": 0},
            "migrationActive": False,
        })

    async def test_abort(self):
        with self.assertRaises(NoActiveMigrationError):
            self.controller.abort()

        await self.controller.start(_workbook(50))
        await asyncio.sleep(0)
        aborted = self.controller.last_run
        result = self.controller.abort()
        self.assertEqual(result["message"], "Migration aborted")
        self.assertFalse(self.controller.status()["active"])

        # the slot is free before the aborted run has finished its in-flight write
        await self.controller.start(_workbook(1))
        self.store.gate.set()
        await self.controller.wait()

        self.assertEqual(aborted.run.status, RunStatus.ABORTED)
        self.assertEqual(self.controller.last_run.run.status, RunStatus.COMPLETED)
        self.assertLessEqual(self.store.writes, 2)
        self.assertFalse(self.controller.registry.is_active())

    async def test_pause_is_not_supported(self):
        result = self.controller.pause()
        self.assertFalse(result["supported"])
        self.assertFalse(self.controller.registry.is_active())


if __name__ == "__main__":
    unittest.main()
