"""
repository.py — persistence contract for School records, plus two stores.

    SchoolsRepository          the contract the service depends on
    InMemorySchoolsRepository  lock-protected dict store (local runs, tests)
    SQLSchoolsRepository       SQLAlchemy async store

Settings updates arrive as a sparse mapping of dotted field paths
(e.g. "settings.contact_info.phone") to values. Stores must apply exactly
those fields and leave everything else in the record untouched.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import delete, select, update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column, relationship, selectinload

from schoolhub.core.database import Base
from schoolhub.core.errors import (
    NotFoundError,
    RepositoryUnavailableError,
    ValidationError,
)
from schoolhub.schools.models import (
    ContactInfo,
    FondyCredentials,
    Pages,
    School,
    SchoolSettings,
)

logger = logging.getLogger(__name__)

DOMAINS_PATH = "settings.domains"


class SchoolsRepository(Protocol):

    async def create(self, name: str) -> str:
        ...

    async def get_by_domain(self, domain: str) -> School:
        ...

    async def get_by_id(self, school_id: str) -> School:
        ...

    async def update_settings(self, school_id: str, update: Mapping[str, Any]) -> None:
        ...

    async def set_fondy_credentials(
        self, school_id: str, credentials: FondyCredentials
    ) -> None:
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


def _unique(domains: List[str]) -> List[str]:
    return list(dict.fromkeys(domains))


# ═══════════════════════════════════════════════════════════════════════════
# In-memory store
# ═══════════════════════════════════════════════════════════════════════════

class InMemorySchoolsRepository:
    """Documents kept as plain dicts; every read hands out a fresh School."""

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def add(self, school: School) -> None:
        """Seed a complete record (fixtures, local bootstrap)."""
        with self._lock:
            self._check_domains_free(school.id, school.settings.domains)
            self._documents[school.id] = school.model_dump()

    async def create(self, name: str) -> str:
        school = School(id=_new_id(), name=name)
        with self._lock:
            self._documents[school.id] = school.model_dump()
        logger.info("School created [id=%s]", school.id, extra={"school_id": school.id})
        return school.id

    async def get_by_domain(self, domain: str) -> School:
        with self._lock:
            for document in self._documents.values():
                if domain in document["settings"]["domains"]:
                    return School.model_validate(copy.deepcopy(document))
        raise NotFoundError("School", domain=domain)

    async def get_by_id(self, school_id: str) -> School:
        with self._lock:
            document = self._documents.get(school_id)
            if document is None:
                raise NotFoundError("School", id=school_id)
            return School.model_validate(copy.deepcopy(document))

    async def update_settings(self, school_id: str, update: Mapping[str, Any]) -> None:
        with self._lock:
            document = self._documents.get(school_id)
            if document is None:
                raise NotFoundError("School", id=school_id)

            candidate = copy.deepcopy(document)
            for path, value in update.items():
                if path == DOMAINS_PATH:
                    value = _unique(value)
                    self._check_domains_free(school_id, value)
                _set_dotted(candidate, path, copy.deepcopy(value))

            try:
                School.model_validate(candidate)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid settings update: {e.error_count()} error(s)") from e

            self._documents[school_id] = candidate

    async def set_fondy_credentials(
        self, school_id: str, credentials: FondyCredentials
    ) -> None:
        with self._lock:
            document = self._documents.get(school_id)
            if document is None:
                raise NotFoundError("School", id=school_id)
            document["fondy"] = credentials.model_dump()

    def _check_domains_free(self, school_id: str, domains: List[str]) -> None:
        for other_id, other in self._documents.items():
            if other_id == school_id:
                continue
            taken = set(domains) & set(other["settings"]["domains"])
            if taken:
                raise ValidationError(
                    "Domain already belongs to another school",
                    field=DOMAINS_PATH,
                    domains=sorted(taken),
                )


def _set_dotted(document: Dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    node = document
    for segment in parents:
        child = node.get(segment)
        if not isinstance(child, dict):
            raise ValidationError(f"Unknown settings field '{path}'", field=path)
        node = child
    if leaf not in node:
        raise ValidationError(f"Unknown settings field '{path}'", field=path)
    node[leaf] = value


# ═══════════════════════════════════════════════════════════════════════════
# SQL store
# ═══════════════════════════════════════════════════════════════════════════

class SchoolRow(Base):
    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # settings
    color: Mapped[str] = mapped_column(String(32), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    show_payment_images: Mapped[bool] = mapped_column(Boolean, default=False)
    google_analytics_code: Mapped[str] = mapped_column(String(64), default="")
    logo_url: Mapped[str] = mapped_column(Text, default="")

    # settings.contact_info
    contact_business_name: Mapped[str] = mapped_column(String(255), default="")
    contact_registration_number: Mapped[str] = mapped_column(String(64), default="")
    contact_address: Mapped[str] = mapped_column(Text, default="")
    contact_email: Mapped[str] = mapped_column(String(255), default="")
    contact_phone: Mapped[str] = mapped_column(String(64), default="")

    # settings.pages
    page_confidential: Mapped[str] = mapped_column(Text, default="")
    page_service_agreement: Mapped[str] = mapped_column(Text, default="")
    page_newsletter_consent: Mapped[str] = mapped_column(Text, default="")

    # fondy
    fondy_connected: Mapped[bool] = mapped_column(Boolean, default=False)
    fondy_merchant_id: Mapped[str] = mapped_column(String(64), default="")
    fondy_merchant_password: Mapped[str] = mapped_column(String(255), default="")

    domains: Mapped[List["SchoolDomainRow"]] = relationship(
        order_by="SchoolDomainRow.position",
        cascade="all, delete-orphan",
    )


class SchoolDomainRow(Base):
    __tablename__ = "school_domains"

    domain: Mapped[str] = mapped_column(String(255), primary_key=True)
    school_id: Mapped[str] = mapped_column(
        ForeignKey("schools.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)


_COLUMN_FOR_PATH: Dict[str, str] = {
    "name":                                     "name",
    "settings.color":                           "color",
    "settings.email":                           "email",
    "settings.show_payment_images":             "show_payment_images",
    "settings.google_analytics_code":           "google_analytics_code",
    "settings.logo_url":                        "logo_url",
    "settings.contact_info.business_name":      "contact_business_name",
    "settings.contact_info.registration_number": "contact_registration_number",
    "settings.contact_info.address":            "contact_address",
    "settings.contact_info.email":              "contact_email",
    "settings.contact_info.phone":              "contact_phone",
    "settings.pages.confidential":              "page_confidential",
    "settings.pages.service_agreement":         "page_service_agreement",
    "settings.pages.newsletter_consent":        "page_newsletter_consent",
}


def _to_school(row: SchoolRow) -> School:
    return School(
        id=row.id,
        name=row.name,
        description=row.description,
        registered_at=row.registered_at,
        settings=SchoolSettings(
            color=row.color,
            domains=[d.domain for d in row.domains],
            email=row.email,
            contact_info=ContactInfo(
                business_name=row.contact_business_name,
                registration_number=row.contact_registration_number,
                address=row.contact_address,
                email=row.contact_email,
                phone=row.contact_phone,
            ),
            pages=Pages(
                confidential=row.page_confidential,
                service_agreement=row.page_service_agreement,
                newsletter_consent=row.page_newsletter_consent,
            ),
            show_payment_images=row.show_payment_images,
            google_analytics_code=row.google_analytics_code,
            logo_url=row.logo_url,
        ),
        fondy=FondyCredentials(
            connected=row.fondy_connected,
            merchant_id=row.fondy_merchant_id,
            merchant_password=row.fondy_merchant_password,
        ),
    )


class SQLSchoolsRepository:
    """
    Flattened schools table + alias table.

    A settings update touches only the columns named in the update mapping
    (one UPDATE statement); the alias rows are replaced only when
    settings.domains is part of the update.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, name: str) -> str:
        school = School(id=_new_id(), name=name)
        try:
            async with self._session_factory() as session, session.begin():
                session.add(SchoolRow(
                    id=school.id,
                    name=school.name,
                    registered_at=school.registered_at,
                ))
        except SQLAlchemyError as e:
            raise RepositoryUnavailableError("create", str(e)) from e
        logger.info("School created [id=%s]", school.id, extra={"school_id": school.id})
        return school.id

    async def get_by_domain(self, domain: str) -> School:
        stmt = (
            select(SchoolRow)
            .join(SchoolDomainRow, SchoolDomainRow.school_id == SchoolRow.id)
            .where(SchoolDomainRow.domain == domain)
            .options(selectinload(SchoolRow.domains))
        )
        row = await self._fetch_one("get_by_domain", stmt)
        if row is None:
            raise NotFoundError("School", domain=domain)
        return _to_school(row)

    async def get_by_id(self, school_id: str) -> School:
        stmt = (
            select(SchoolRow)
            .where(SchoolRow.id == school_id)
            .options(selectinload(SchoolRow.domains))
        )
        row = await self._fetch_one("get_by_id", stmt)
        if row is None:
            raise NotFoundError("School", id=school_id)
        return _to_school(row)

    async def update_settings(self, school_id: str, update: Mapping[str, Any]) -> None:
        values: Dict[str, Any] = {}
        domains: Optional[List[str]] = None
        for path, value in update.items():
            if path == DOMAINS_PATH:
                domains = _unique(value)
            elif path in _COLUMN_FOR_PATH:
                values[_COLUMN_FOR_PATH[path]] = value
            else:
                raise ValidationError(f"Unknown settings field '{path}'", field=path)

        try:
            async with self._session_factory() as session, session.begin():
                found = await session.scalar(
                    select(SchoolRow.id).where(SchoolRow.id == school_id)
                )
                if found is None:
                    raise NotFoundError("School", id=school_id)

                if values:
                    await session.execute(
                        sql_update(SchoolRow)
                        .where(SchoolRow.id == school_id)
                        .values(**values)
                    )

                if domains is not None:
                    await session.execute(
                        delete(SchoolDomainRow).where(SchoolDomainRow.school_id == school_id)
                    )
                    session.add_all([
                        SchoolDomainRow(domain=d, school_id=school_id, position=i)
                        for i, d in enumerate(domains)
                    ])
                    await session.flush()
        except IntegrityError as e:
            raise ValidationError(
                "Domain already belongs to another school",
                field=DOMAINS_PATH,
            ) from e
        except SQLAlchemyError as e:
            raise RepositoryUnavailableError("update_settings", str(e)) from e

    async def set_fondy_credentials(
        self, school_id: str, credentials: FondyCredentials
    ) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    sql_update(SchoolRow)
                    .where(SchoolRow.id == school_id)
                    .values(
                        fondy_connected=credentials.connected,
                        fondy_merchant_id=credentials.merchant_id,
                        fondy_merchant_password=credentials.merchant_password,
                    )
                )
                if result.rowcount == 0:
                    raise NotFoundError("School", id=school_id)
        except SQLAlchemyError as e:
            raise RepositoryUnavailableError("set_fondy_credentials", str(e)) from e

    async def _fetch_one(self, operation: str, stmt) -> Optional[SchoolRow]:
        try:
            async with self._session_factory() as session:
                return (await session.scalars(stmt)).first()
        except SQLAlchemyError as e:
            raise RepositoryUnavailableError(operation, str(e)) from e
