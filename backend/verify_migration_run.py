import asyncio

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_migrator.core.database import Base
from crm_migrator.models.contact import Contact
from crm_migrator.models.organization import Organization
from crm_migrator.services.cells import to_cell
from crm_migrator.services.entity_store import SqlAlchemyEntityStore
from crm_migrator.services.migration_executor import MigrationExecutor, RunStatus
from crm_migrator.services.progress_broadcaster import ProgressBroadcaster
from crm_migrator.services.workbook_reader import SheetMatrix, Workbook


def _sheet(name: str, rows: list[list]) -> SheetMatrix:
    return SheetMatrix(name=name, rows=[[to_cell(v) for v in row] for row in rows])


def main() -> None:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    workbook = Workbook(name="verify.xlsx", sheets=[
        _sheet("Contacts", [
            ["Contact list"],
            ["First Name", "Last Name", "Organization", "Email"],
            ["Ada", "Lovelace", "Acme Foods", "ada@acme.test"],
            ["Bob", "Nobody", "Missing Org", "bob@missing.test"],
        ]),
        _sheet("Organizations", [
            ["Q3 customer export", None, None, None],
            ["Organization Name", "Priority", "Segment", "Email"],
            ["Acme Foods", "A", "Grocery", "SALES@ACME.TEST"],
            ["Acme Foods", "B", "Grocery", "sales@acme.test"],
            [None, None, None, None],
        ]),
    ])

    store = SqlAlchemyEntityStore(TestingSessionLocal)
    executor = MigrationExecutor("verify", store, ProgressBroadcaster(ping_interval_s=60))
    run = asyncio.run(executor.execute(workbook))

    assert run.status == RunStatus.COMPLETED, run.status
    orgs = run.counters_dict()["organizations"]
    assert orgs == {"processed": 3, "created": 1, "skipped": 2, "errored": 0}, orgs
    contacts = run.counters_dict()["contacts"]
    assert contacts == {"processed": 2, "created": 1, "skipped": 0, "errored": 1}, contacts

    db = TestingSessionLocal()
    try:
        org = db.query(Organization).filter(Organization.name == "Acme Foods").one()
        assert org.priority == "HIGH", org.priority
        assert org.email == "sales@acme.test", org.email
        assert db.query(Contact).count() == 1
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
