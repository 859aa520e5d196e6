"""
tests/test_qualification.py — Unit tests for the qualification gate.
"""

from leadflow.db.models import Lead
from leadflow.services.qualification import QUALIFIED_REASON, pre_qualify


def _make_lead(text: str = "", **fields) -> Lead:
    return Lead(
        id=1,
        company_name="Acme",
        signal_payload={"title": text} if text else {},
        route_to_outreach=fields.pop("route_to_outreach", False),
        **fields,
    )


NEEDS_HELP_TEXT = "We need help with a slow manual process"


class TestPreQualify:
    def test_three_criteria_qualifies(self):
        result = pre_qualify(_make_lead(NEEDS_HELP_TEXT, company_domain="acme.io"))
        assert result.qualified is True
        assert result.overridden is False
        assert result.met_count == 3
        assert result.criteria == {
            "looking_for_solutions": True,
            "has_budget": False,
            "relevant_pain_point": True,
            "reachable": True,
        }
        assert result.reason == QUALIFIED_REASON

    def test_two_criteria_rejected_with_missing_list(self):
        result = pre_qualify(_make_lead(NEEDS_HELP_TEXT))
        assert result.qualified is False
        assert result.met_count == 2
        assert result.unmet == ["has_budget", "reachable"]
        assert result.reason == "Missing: has_budget, reachable"

    def test_routing_flag_overrides(self):
        result = pre_qualify(_make_lead(route_to_outreach=True))
        assert result.qualified is True
        assert result.overridden is True
        assert result.criteria["reachable"] is True
        assert result.met_count == 1

    def test_high_discovery_score_satisfies_three_criteria(self):
        result = pre_qualify(_make_lead(discovery_score=70))
        assert result.qualified is True
        assert result.criteria["looking_for_solutions"] is True
        assert result.criteria["has_budget"] is True
        assert result.criteria["relevant_pain_point"] is True
        assert result.criteria["reachable"] is False

    def test_discovery_score_below_threshold_does_nothing(self):
        result = pre_qualify(_make_lead(discovery_score=69))
        assert result.qualified is False
        assert result.met_count == 0

    def test_all_four_criteria(self):
        text = "Looking for an agency. We raised funding but sales are slow."
        result = pre_qualify(_make_lead(text, contact_email="jo@acme.io"))
        assert result.qualified is True
        assert result.met_count == 4
        assert result.unmet == []

    def test_signals_are_returned_for_scoring(self):
        result = pre_qualify(_make_lead(NEEDS_HELP_TEXT, company_domain="acme.io"))
        assert result.signals["needs_help"] is True
        assert result.signals["has_contact_info"] is True
