"""Sheet catalog: stores uploaded advisory rows. Rows are never edited."""

import logging
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AuditAction, RiskLevel, Sheet, SourceEntry
from .audit import AuditService
from .errors import SheetNotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class EntryInput:
    """One advisory row as supplied by the uploader."""
    vendor_name: str | None = None
    product_name: str | None = None
    cve: str | None = None
    risk_level: str | None = None
    source_url: str | None = None


def parse_risk_level(value: str | RiskLevel | None) -> RiskLevel | None:
    if value is None or isinstance(value, RiskLevel):
        return value
    text = value.strip()
    if not text:
        return None
    for level in RiskLevel:
        if level.value.lower() == text.lower():
            return level
    raise ValueError(f"unknown risk level '{value}'")


class SheetCatalog:
    """Create and read sheets and their entries."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._audit = AuditService(session)

    async def create_sheet(
        self,
        title: str,
        month: int | None,
        year: int | None,
        entries: Sequence[EntryInput],
        uploaded_by: UUID | None,
    ) -> Sheet:
        if not title or not title.strip():
            raise ValidationError("Sheet title is required", {"title": "required"})

        errors: dict[str, str] = {}
        levels: list[RiskLevel | None] = []
        for index, row in enumerate(entries):
            try:
                levels.append(parse_risk_level(row.risk_level))
            except ValueError as e:
                errors[f"entries[{index}].risk_level"] = str(e)
        if errors:
            raise ValidationError("Invalid sheet entries", errors)

        sheet = Sheet(title=title.strip(), month=month, year=year, uploaded_by=uploaded_by)
        self._session.add(sheet)
        await self._session.flush()

        for position, (row, level) in enumerate(zip(entries, levels)):
            self._session.add(
                SourceEntry(
                    sheet_id=sheet.id,
                    position=position,
                    vendor_name=row.vendor_name,
                    product_name=row.product_name,
                    cve=row.cve,
                    risk_level=level,
                    source_url=row.source_url,
                )
            )

        self._audit.log_event(
            action=AuditAction.CREATE,
            resource_type="sheet",
            resource_id=sheet.id,
            user_id=uploaded_by,
            details={"title": sheet.title, "entries": len(entries)},
        )
        await self._session.flush()

        logger.info(f"Created sheet {sheet.id} '{sheet.title}' with {len(entries)} entries")
        return sheet

    async def get_sheet(self, sheet_id: UUID) -> Sheet:
        sheet = await self._session.get(Sheet, sheet_id)
        if sheet is None:
            raise SheetNotFoundError(f"Sheet {sheet_id} not found")
        return sheet

    async def list_entries(self, sheet_id: UUID) -> Sequence[SourceEntry]:
        result = await self._session.execute(
            select(SourceEntry)
            .where(SourceEntry.sheet_id == sheet_id)
            .order_by(SourceEntry.position, SourceEntry.created_at)
        )
        return result.scalars().all()

    async def count_entries(self, sheet_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(SourceEntry).where(SourceEntry.sheet_id == sheet_id)
        )
        return result.scalar_one()
