from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

from sqlalchemy import func
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm_migrator.core.database import SessionLocal
from crm_migrator.models.contact import Contact
from crm_migrator.models.interaction import Interaction
from crm_migrator.models.opportunity import Opportunity
from crm_migrator.models.organization import Organization
from crm_migrator.services.errors import RowValidationError, StoreUnavailableError
from crm_migrator.services.mapping_advisor import ENTITY_ORDER, TargetEntity

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    TargetEntity.ORGANIZATIONS: Organization,
    TargetEntity.CONTACTS: Contact,
    TargetEntity.OPPORTUNITIES: Opportunity,
    TargetEntity.INTERACTIONS: Interaction,
}

_CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


class EntityStore(Protocol):
    async def create(self, entity: TargetEntity, record: dict[str, Any]) -> bool:
        """Persist one record. True when a row was created, False when it already existed."""
        ...

    async def count(self, entity: TargetEntity) -> int:
        ...

    async def counts(self) -> dict[str, int]:
        ...


class SqlAlchemyEntityStore:
    """Entity writes through short-lived sessions, run off the event loop.

    Each call opens its own session so an in-flight write always commits or
    rolls back as a unit before control returns to the caller.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    async def create(self, entity: TargetEntity, record: dict[str, Any]) -> bool:
        return await asyncio.to_thread(self._create_sync, entity, record)

    async def count(self, entity: TargetEntity) -> int:
        return await asyncio.to_thread(self._count_sync, entity)

    async def counts(self) -> dict[str, int]:
        return await asyncio.to_thread(self._counts_sync)

    def _create_sync(self, entity: TargetEntity, record: dict[str, Any]) -> bool:
        writers = {
            TargetEntity.ORGANIZATIONS: self._create_organization,
            TargetEntity.CONTACTS: self._create_contact,
            TargetEntity.OPPORTUNITIES: self._create_opportunity,
            TargetEntity.INTERACTIONS: self._create_interaction,
        }
        db = self.session_factory()
        try:
            obj = writers[entity](db, record)
            if obj is None:
                return False
            db.add(obj)
            db.commit()
            return True
        except _CONNECTIVITY_ERRORS as exc:
            db.rollback()
            raise StoreUnavailableError(f"Entity store unavailable: {exc}") from exc
        except IntegrityError as exc:
            db.rollback()
            raise RowValidationError(f"Rejected by store: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            raise RowValidationError(f"Rejected by store: {exc}") from exc
        except RowValidationError:
            db.rollback()
            raise
        finally:
            db.close()

    def _count_sync(self, entity: TargetEntity) -> int:
        db = self.session_factory()
        try:
            model = ENTITY_MODELS[entity]
            return int(db.query(func.count(model.id)).scalar() or 0)
        except _CONNECTIVITY_ERRORS as exc:
            raise StoreUnavailableError(f"Entity store unavailable: {exc}") from exc
        finally:
            db.close()

    def _counts_sync(self) -> dict[str, int]:
        return {entity.value: self._count_sync(entity) for entity in ENTITY_ORDER}

    # Lookups

    def _find_organization(self, db: Session, name: str | None) -> Organization | None:
        if not name:
            return None
        return (
            db.query(Organization)
            .filter(func.lower(Organization.name) == name.strip().lower())
            .first()
        )

    def _require_organization(self, db: Session, name: str | None) -> Organization:
        org = self._find_organization(db, name)
        if org is None:
            raise RowValidationError(f"Organization not found: {name}")
        return org

    # Writers return None when the record already exists.

    def _create_organization(self, db: Session, record: dict[str, Any]) -> Organization | None:
        if self._find_organization(db, record["name"]) is not None:
            return None
        return Organization(**record)

    def _create_contact(self, db: Session, record: dict[str, Any]) -> Contact | None:
        data = dict(record)
        org = self._require_organization(db, data.pop("organization_name"))
        existing = (
            db.query(Contact)
            .filter(
                Contact.organization_id == org.id,
                func.lower(Contact.first_name) == data["first_name"].lower(),
                func.lower(Contact.last_name) == (data.get("last_name") or "").lower(),
            )
            .first()
        )
        if existing is not None:
            return None
        return Contact(organization_id=org.id, **data)

    def _create_opportunity(self, db: Session, record: dict[str, Any]) -> Opportunity | None:
        data = dict(record)
        org = self._require_organization(db, data.pop("organization_name"))
        existing = (
            db.query(Opportunity)
            .filter(
                Opportunity.organization_id == org.id,
                func.lower(Opportunity.name) == data["name"].lower(),
            )
            .first()
        )
        if existing is not None:
            return None
        return Opportunity(organization_id=org.id, **data)

    def _create_interaction(self, db: Session, record: dict[str, Any]) -> Interaction:
        data = dict(record)
        org_name = data.pop("organization_name", None)
        contact_name = data.pop("contact_name", None)
        opportunity_name = data.pop("opportunity_name", None)

        org = self._require_organization(db, org_name) if org_name else None

        contact_id = None
        if contact_name:
            query = db.query(Contact).filter(
                func.lower(func.trim(Contact.first_name + " " + Contact.last_name)) == contact_name.strip().lower()
            )
            if org is not None:
                query = query.filter(Contact.organization_id == org.id)
            contact = query.first()
            contact_id = contact.id if contact else None

        opportunity_id = None
        if opportunity_name:
            query = db.query(Opportunity).filter(func.lower(Opportunity.name) == opportunity_name.strip().lower())
            if org is not None:
                query = query.filter(Opportunity.organization_id == org.id)
            opportunity = query.first()
            opportunity_id = opportunity.id if opportunity else None

        return Interaction(
            organization_id=org.id if org else None,
            contact_id=contact_id,
            opportunity_id=opportunity_id,
            **data,
        )
