import asyncio
import unittest


from crm_migrator.services.cells import to_cell
from crm_migrator.services.errors import StoreUnavailableError
from crm_migrator.services.mapping_advisor import TargetEntity
from crm_migrator.services.migration_executor import MigrationExecutor, RunStatus
from crm_migrator.services.progress_broadcaster import EventKind, ProgressBroadcaster
from crm_migrator.services.workbook_reader import SheetMatrix, Workbook


def _sheet(name, rows):
    return SheetMatrix(name=name, rows=[[to_cell(v) for v in row] for row in rows])


def _org_sheet(count, name="Organizations"):
    rows = [["Organization Name", "Priority", "Segment"]]
    rows += [[f"Org {i}", "A", "Grocery"] for i in range(count)]
    return _sheet(name, rows)


class FakeStore:
    def __init__(self, fail_after=None, on_write=None):
        self.writes = []
        self.keys = set()
        self.fail_after = fail_after
        self.on_write = on_write

    async def create(self, entity, record):
        await asyncio.sleep(0)
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise StoreUnavailableError("connection refused")
        self.writes.append((entity, record))
        if self.on_write:
            self.on_write(len(self.writes))
        key = (entity, record.get("name"), record.get("first_name"))
        if entity != TargetEntity.INTERACTIONS and key in self.keys:
            return False
        self.keys.add(key)
        return True

    async def count(self, entity):
        return sum(1 for e, _ in self.writes if e == entity)

    async def counts(self):
        return {e.value: await self.count(e) for e in TargetEntity}


class RecordingBroadcaster(ProgressBroadcaster):
    def __init__(self):
        super().__init__(ping_interval_s=60, queue_size=10)
        self.events = []

    def publish(self, kind, payload=None):
        self.events.append((kind, payload or {}))
        return 1

    def kinds(self):
        return [k for k, _ in self.events]


class TestMigrationExecutor(unittest.IsolatedAsyncioTestCase):
    def _executor(self, store, **kwargs):
        self.broadcaster = RecordingBroadcaster()
        kwargs.setdefault("progress_every_rows", 2)
        kwargs.setdefault("max_reported_errors", 100)
        return MigrationExecutor("run-1", store, self.broadcaster, **kwargs)

    async def test_completes_and_reports_summary(self):
        store = FakeStore()
        executor = self._executor(store)
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(5)]))

        self.assertEqual(run.status, RunStatus.COMPLETED)
        self.assertEqual(run.counters[TargetEntity.ORGANIZATIONS].to_dict(),
                         {"processed": 5, "created": 5, "skipped": 0, "errored": 0})
        kinds = self.broadcaster.kinds()
        self.assertEqual(kinds[0], EventKind.SHEET_STARTED)
        self.assertEqual(kinds[-1], EventKind.DONE)
        self.assertEqual(kinds.count(EventKind.PROGRESS), 3)
        done = self.broadcaster.events[-1][1]
        self.assertEqual(done["status"], "completed")
        self.assertEqual(done["counters"]["organizations"]["created"], 5)
        self.assertIsNotNone(run.ended_at)

    async def test_row_errors_do_not_stop_the_run(self):
        sheet = _sheet("Organizations", [
            ["Organization Name", "Priority", "Segment"],
            ["Acme", "A", "Grocery"],
            [None, "B", "Grocery"],
            ["Blue Cafe", "Z", "Cafe"],
            ["Corner Deli", "C", "Deli"],
            [None, None, None],
        ])
        store = FakeStore()
        executor = self._executor(store)
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[sheet]))

        self.assertEqual(run.status, RunStatus.COMPLETED)
        self.assertEqual(run.counters[TargetEntity.ORGANIZATIONS].to_dict(),
                         {"processed": 5, "created": 2, "skipped": 1, "errored": 2})
        self.assertEqual([e["row"] for e in run.errors], [3, 4])
        self.assertEqual(len(store.writes), 2)

    async def test_bad_serial_date_is_a_row_error(self):
        sheet = _sheet("Interactions", [
            ["Date", "Interaction Type", "Organization", "Notes"],
            [5551234567, "Call", "Acme", "x"],
            [45000, "Call", "Acme", "y"],
        ])
        store = FakeStore()
        executor = self._executor(store)
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[sheet]))

        self.assertEqual(run.status, RunStatus.COMPLETED)
        self.assertEqual(run.counters[TargetEntity.INTERACTIONS].to_dict(),
                         {"processed": 2, "created": 1, "skipped": 0, "errored": 1})
        self.assertEqual(run.errors[0]["row"], 2)
        self.assertIn("Invalid date", run.errors[0]["message"])
        self.assertEqual(len(store.writes), 1)
        self.assertEqual(store.writes[0][1]["notes"], "y")

    async def test_unexpected_row_fault_is_counted(self):
        class FaultyStore(FakeStore):
            async def create(self, entity, record):
                if record["name"] == "Org 1":
                    raise ValueError("bad bind parameter")
                return await super().create(entity, record)

        store = FaultyStore()
        executor = self._executor(store)
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(3)]))

        self.assertEqual(run.status, RunStatus.COMPLETED)
        self.assertEqual(run.counters[TargetEntity.ORGANIZATIONS].to_dict(),
                         {"processed": 3, "created": 2, "skipped": 0, "errored": 1})
        self.assertEqual(run.errors, [{"sheet": "Organizations", "row": 3, "message": "Unexpected error: bad bind parameter"}])

    async def test_error_list_is_capped(self):
        rows = [["Organization Name", "Priority", "Segment"]]
        rows += [[f"Org {i}", "bad", "x"] for i in range(10)]
        executor = self._executor(FakeStore(), max_reported_errors=3)
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[_sheet("Organizations", rows)]))
        self.assertEqual(run.counters[TargetEntity.ORGANIZATIONS].errored, 10)
        self.assertEqual(len(run.errors), 3)

    async def test_store_failure_fails_the_run(self):
        store = FakeStore(fail_after=2)
        executor = self._executor(store)
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(6)]))

        self.assertEqual(run.status, RunStatus.FAILED)
        self.assertIn("connection refused", run.message)
        self.assertEqual(len(store.writes), 2)
        fatal = [p for k, p in self.broadcaster.events if k == EventKind.ERROR]
        self.assertTrue(fatal and fatal[-1]["fatal"])
        self.assertEqual(self.broadcaster.kinds()[-1], EventKind.DONE)

    async def test_abort_stops_after_inflight_write(self):
        holder = {}
        store = FakeStore(on_write=lambda n: holder["executor"].abort() if n == 3 else None)
        executor = self._executor(store)
        holder["executor"] = executor
        run = await executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(10), _org_sheet(4, "Company B")]))

        self.assertEqual(run.status, RunStatus.ABORTED)
        self.assertEqual(len(store.writes), 3)
        self.assertEqual(run.counters[TargetEntity.ORGANIZATIONS].created, 3)

    async def test_abort_while_running_concurrently(self):
        store = FakeStore()
        executor = self._executor(store)
        task = asyncio.create_task(executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(200)])))
        while len(store.writes) < 5:
            await asyncio.sleep(0)
        executor.abort()
        written = len(store.writes)
        run = await task

        self.assertEqual(run.status, RunStatus.ABORTED)
        self.assertLessEqual(len(store.writes), written + 1)

    async def test_unusable_sheets_are_skipped(self):
        workbook = Workbook(name="crm.xlsx", sheets=[
            _sheet("Organizations Archive", []),
            _sheet("Lookups", [["Code", "Label", "Sort"], ["A", "Alpha", 1]]),
            _org_sheet(2),
        ])
        executor = self._executor(FakeStore())
        run = await executor.execute(workbook)

        self.assertEqual(run.status, RunStatus.COMPLETED)
        self.assertEqual(run.counters[TargetEntity.ORGANIZATIONS].created, 2)
        skipped = [p for k, p in self.broadcaster.events if k == EventKind.SHEET_COMPLETED and p["skipped"]]
        self.assertEqual([p["sheet"] for p in skipped], ["Organizations Archive", "Lookups"])
        errors = [p for k, p in self.broadcaster.events if k == EventKind.ERROR]
        self.assertEqual(len(errors), 1)
        self.assertFalse(errors[0]["fatal"])

    async def test_sheets_run_in_dependency_order(self):
        contacts = _sheet("Contacts", [
            ["First Name", "Last Name", "Organization"],
            ["Jane", "Doe", "Org 0"],
        ])
        store = FakeStore()
        executor = self._executor(store)
        await executor.execute(Workbook(name="crm.xlsx", sheets=[contacts, _org_sheet(1)]))

        self.assertEqual([e for e, _ in store.writes], [TargetEntity.ORGANIZATIONS, TargetEntity.CONTACTS])

    async def test_missing_workbook_fails(self):
        executor = self._executor(FakeStore())
        run = await executor.execute("/nonexistent/dir/CRM-WORKBOOK.xlsx")
        self.assertEqual(run.status, RunStatus.FAILED)
        self.assertEqual(self.broadcaster.kinds()[-1], EventKind.DONE)

    async def test_execute_only_once(self):
        executor = self._executor(FakeStore())
        await executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(1)]))
        with self.assertRaises(RuntimeError):
            await executor.execute(Workbook(name="crm.xlsx", sheets=[_org_sheet(1)]))


if __name__ == "__main__":
    unittest.main()
