"""
Response field rules: normalization, cascades and completion checks.

Everything here is pure. A team response is modelled as a fixed record of
twelve optional fields; the cascade function is total over that record and
idempotent, so it can run on every save regardless of which field changed.

Cascade precedence:
1. deployed_in_ke == "N" forces the deployment-dependent fields to "N/A" and
   clears their details. No other rule applies.
2. vendor_contacted != "Y" clears vendor_contact_date.
3. compensatory_controls_provided != "Y" clears the control details and
   estimated_time.
4. patching in ("N", "N/A") clears the release and implementation dates.
"""

from dataclasses import asdict, dataclass, fields, replace
from datetime import date, datetime
from typing import Any, Mapping

from .errors import ValidationError

YES = "Y"
NO = "N"
NOT_APPLICABLE = "N/A"


@dataclass(frozen=True)
class ResponseFields:
    """The team-editable payload of one response."""

    current_status: str | None = None
    comments: str | None = None
    deployed_in_ke: str | None = None
    vendor_contacted: str | None = None
    vendor_contact_date: date | None = None
    compensatory_controls_provided: str | None = None
    compensatory_controls_details: str | None = None
    estimated_time: str | None = None
    site: str | None = None
    patching: str | None = None
    patching_est_release_date: date | None = None
    implementation_date: date | None = None

    @classmethod
    def from_record(cls, record: Any) -> "ResponseFields":
        """Read the payload off an ORM row (or anything with the attributes)."""
        return cls(**{name: getattr(record, name, None) for name in FIELD_NAMES})

    def merged(self, changes: Mapping[str, Any]) -> "ResponseFields":
        """Return a copy with already-normalized ``changes`` applied."""
        return replace(self, **dict(changes))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> dict[str, Any]:
        """Dict form with dates as ISO strings."""
        return {
            name: value.isoformat() if isinstance(value, date) else value
            for name, value in asdict(self).items()
        }

    def write_to(self, record: Any) -> None:
        """Copy every field onto an ORM row."""
        for name, value in asdict(self).items():
            setattr(record, name, value)


FIELD_NAMES: tuple[str, ...] = tuple(f.name for f in fields(ResponseFields))

YES_NO_FIELDS = frozenset(
    {"deployed_in_ke", "vendor_contacted", "compensatory_controls_provided", "patching"}
)
DATE_FIELDS = frozenset(
    {"vendor_contact_date", "patching_est_release_date", "implementation_date"}
)
TEXT_FIELDS = frozenset(FIELD_NAMES) - YES_NO_FIELDS - DATE_FIELDS

_YES_NO_ALIASES = {
    "y": YES,
    "yes": YES,
    "true": YES,
    "n": NO,
    "no": NO,
    "false": NO,
    "n/a": NOT_APPLICABLE,
    "na": NOT_APPLICABLE,
    "not applicable": NOT_APPLICABLE,
}


# =============================================================================
# NORMALIZATION
# =============================================================================


def _normalize_yes_no(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return YES if value else NO
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        normalized = _YES_NO_ALIASES.get(text.lower())
        if normalized is not None:
            return normalized
    raise ValueError("must be one of Y, N, N/A")


def _normalize_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise ValueError("must be an ISO date (YYYY-MM-DD)")


def _normalize_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError("must be a string")
    text = str(value).strip()
    return text or None


def normalize_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Validate and canonicalize client-supplied field values.

    Unknown field names and unparseable values raise ``ValidationError`` with
    one message per offending field.
    """
    normalized: dict[str, Any] = {}
    errors: dict[str, str] = {}

    for name, value in changes.items():
        try:
            if name in YES_NO_FIELDS:
                normalized[name] = _normalize_yes_no(value)
            elif name in DATE_FIELDS:
                normalized[name] = _normalize_date(value)
            elif name in TEXT_FIELDS:
                normalized[name] = _normalize_text(value)
            else:
                errors[name] = "unknown field"
        except ValueError as e:
            errors[name] = str(e)

    if errors:
        raise ValidationError("Invalid response fields", field_errors=errors)
    return normalized


# =============================================================================
# CASCADE
# =============================================================================


def apply_cascade(current: ResponseFields) -> ResponseFields:
    """Return ``current`` with every dependent field made consistent."""
    if current.deployed_in_ke == NO:
        return replace(
            current,
            site=NOT_APPLICABLE,
            current_status=NOT_APPLICABLE,
            vendor_contacted=NOT_APPLICABLE,
            compensatory_controls_provided=NOT_APPLICABLE,
            patching=NOT_APPLICABLE,
            vendor_contact_date=None,
            patching_est_release_date=None,
            implementation_date=None,
            compensatory_controls_details=None,
            estimated_time=None,
        )

    updates: dict[str, Any] = {}
    if current.vendor_contacted != YES:
        updates["vendor_contact_date"] = None
    if current.compensatory_controls_provided != YES:
        updates["compensatory_controls_details"] = None
        updates["estimated_time"] = None
    if current.patching in (NO, NOT_APPLICABLE):
        updates["patching_est_release_date"] = None
        updates["implementation_date"] = None

    return replace(current, **updates) if updates else current


def validate_for_completion(current: ResponseFields) -> None:
    """Raise ``ValidationError`` if the response cannot be marked completed."""
    errors: dict[str, str] = {}

    if current.deployed_in_ke is None:
        errors["deployed_in_ke"] = "required to complete an entry"
    elif current.deployed_in_ke == YES and not current.current_status:
        errors["current_status"] = "required when deployed_in_ke is Y"

    if errors:
        raise ValidationError("Entry is not ready to be completed", field_errors=errors)


def prepare(current: ResponseFields, changes: Mapping[str, Any]) -> ResponseFields:
    """Normalize ``changes``, merge them onto ``current`` and cascade."""
    return apply_cascade(current.merged(normalize_changes(changes)))
