"""
Tests for the response field rules.

These are pure functions, so no database is needed.
"""

from datetime import date, datetime, timezone

import pytest

from advisory_tracker.services.cascade import (
    FIELD_NAMES,
    NOT_APPLICABLE,
    ResponseFields,
    apply_cascade,
    normalize_changes,
    prepare,
    validate_for_completion,
)
from advisory_tracker.services.errors import ValidationError


def filled(**overrides) -> ResponseFields:
    """A response with every field populated."""
    values = dict(
        current_status="Patched on 3 of 5 sites",
        comments="Waiting on vendor",
        deployed_in_ke="Y",
        vendor_contacted="Y",
        vendor_contact_date=date(2026, 10, 2),
        compensatory_controls_provided="Y",
        compensatory_controls_details="Port 502 blocked at the firewall",
        estimated_time="2 weeks",
        site="Olkaria",
        patching="Y",
        patching_est_release_date=date(2026, 11, 1),
        implementation_date=date(2026, 11, 15),
    )
    values.update(overrides)
    return ResponseFields(**values)


# =============================================================================
# NORMALIZATION
# =============================================================================


class TestNormalizeChanges:
    """Client values are canonicalized before anything else runs."""

    def test_yes_no_aliases(self):
        result = normalize_changes(
            {
                "deployed_in_ke": "yes",
                "vendor_contacted": " n ",
                "compensatory_controls_provided": "NA",
                "patching": True,
            }
        )
        assert result == {
            "deployed_in_ke": "Y",
            "vendor_contacted": "N",
            "compensatory_controls_provided": "N/A",
            "patching": "Y",
        }

    def test_blank_values_become_none(self):
        result = normalize_changes({"deployed_in_ke": "", "site": "   ", "implementation_date": ""})
        assert result == {"deployed_in_ke": None, "site": None, "implementation_date": None}

    def test_dates_accept_iso_strings_and_datetimes(self):
        result = normalize_changes(
            {
                "vendor_contact_date": "2026-10-05",
                "patching_est_release_date": "2026-11-01T00:00:00Z",
                "implementation_date": datetime(2026, 12, 1, 9, 30, tzinfo=timezone.utc),
            }
        )
        assert result["vendor_contact_date"] == date(2026, 10, 5)
        assert result["patching_est_release_date"] == date(2026, 11, 1)
        assert result["implementation_date"] == date(2026, 12, 1)

    def test_invalid_values_are_reported_per_field(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_changes(
                {
                    "deployed_in_ke": "maybe",
                    "vendor_contact_date": "next tuesday",
                    "colour": "blue",
                }
            )

        errors = exc_info.value.field_errors
        assert set(errors) == {"deployed_in_ke", "vendor_contact_date", "colour"}
        assert errors["colour"] == "unknown field"


# =============================================================================
# CASCADE
# =============================================================================


class TestApplyCascade:
    """Dependent fields follow their controlling field."""

    def test_not_deployed_overrides_everything(self):
        result = apply_cascade(filled(deployed_in_ke="N"))

        assert result.site == NOT_APPLICABLE
        assert result.current_status == NOT_APPLICABLE
        assert result.vendor_contacted == NOT_APPLICABLE
        assert result.compensatory_controls_provided == NOT_APPLICABLE
        assert result.patching == NOT_APPLICABLE
        assert result.vendor_contact_date is None
        assert result.patching_est_release_date is None
        assert result.implementation_date is None
        assert result.compensatory_controls_details is None
        assert result.estimated_time is None
        # Untouched by the cascade
        assert result.comments == "Waiting on vendor"

    def test_vendor_not_contacted_clears_contact_date(self):
        result = apply_cascade(filled(vendor_contacted="N"))
        assert result.vendor_contact_date is None
        assert result.implementation_date == date(2026, 11, 15)

    def test_unanswered_vendor_contact_clears_contact_date(self):
        result = apply_cascade(filled(vendor_contacted=None))
        assert result.vendor_contact_date is None

    def test_no_compensatory_controls_clears_details(self):
        result = apply_cascade(filled(compensatory_controls_provided="N/A"))
        assert result.compensatory_controls_details is None
        assert result.estimated_time is None
        assert result.vendor_contact_date == date(2026, 10, 2)

    def test_no_patching_clears_patch_dates(self):
        for value in ("N", "N/A"):
            result = apply_cascade(filled(patching=value))
            assert result.patching_est_release_date is None
            assert result.implementation_date is None

    def test_unanswered_patching_keeps_dates(self):
        result = apply_cascade(filled(patching=None))
        assert result.implementation_date == date(2026, 11, 15)

    def test_independent_rules_combine(self):
        result = apply_cascade(filled(vendor_contacted="N", patching="N"))
        assert result.vendor_contact_date is None
        assert result.implementation_date is None
        assert result.compensatory_controls_details == "Port 502 blocked at the firewall"

    def test_cascade_is_idempotent(self):
        samples = [
            filled(),
            filled(deployed_in_ke="N"),
            filled(vendor_contacted="N", compensatory_controls_provided="N", patching="N/A"),
            ResponseFields(),
        ]
        for sample in samples:
            once = apply_cascade(sample)
            assert apply_cascade(once) == once

    def test_consistent_record_is_unchanged(self):
        record = filled()
        assert apply_cascade(record) == record


class TestPrepare:
    def test_merge_then_cascade(self):
        current = filled()
        result = prepare(current, {"deployed_in_ke": "no"})

        assert result.deployed_in_ke == "N"
        assert result.site == NOT_APPLICABLE
        # Input is never mutated
        assert current.site == "Olkaria"

    def test_partial_changes_keep_other_fields(self):
        result = prepare(filled(), {"comments": "Escalated"})
        assert result.comments == "Escalated"
        assert result.site == "Olkaria"

    def test_round_trip_through_dict(self):
        record = filled()
        assert set(record.to_dict()) == set(FIELD_NAMES)
        assert record.to_json()["vendor_contact_date"] == "2026-10-02"


# =============================================================================
# COMPLETION
# =============================================================================


class TestValidateForCompletion:
    def test_deployed_answer_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_for_completion(ResponseFields(comments="n/a"))
        assert "deployed_in_ke" in exc_info.value.field_errors

    def test_deployed_requires_status(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_for_completion(ResponseFields(deployed_in_ke="Y"))
        assert "current_status" in exc_info.value.field_errors

    def test_not_deployed_is_complete_after_cascade(self):
        validate_for_completion(apply_cascade(ResponseFields(deployed_in_ke="N")))

    def test_fully_answered_is_complete(self):
        validate_for_completion(filled())
