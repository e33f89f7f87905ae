"""Tests for CRM segmentation."""

import pytest

from scripts.analytics.segmentation import (
    DEFAULT_FOCUS_REGION,
    CrmRecord,
    FocusRegion,
    Segment,
    SegmentCandidate,
    assign_segment,
    focus_region_from_config,
    segment_population,
)
from scripts.analytics.sessions import EngagementTier
from scripts.lib.errors import ConfigError

ENGAGED = EngagementTier.ENGAGED
DISENGAGED = EngagementTier.DISENGAGED


def candidate(uid, focus, tier):
    record = CrmRecord(
        name=uid, phone="", city="", course="", stage="Cadastrados", registered_at="",
    )
    return SegmentCandidate(entity_id=uid, in_focus_region=focus, tier=tier, record=record)


@pytest.fixture
def population():
    return (
        [candidate(f"ef{i}", True, ENGAGED) for i in range(5)]
        + [candidate(f"ea{i}", False, ENGAGED) for i in range(3)]
        + [candidate(f"df{i}", True, DISENGAGED) for i in range(2)]
        + [candidate("out", False, DISENGAGED)]
    )


class TestSegmentPopulation:
    def test_sizes(self, population):
        result = segment_population(population)
        assert result.count(Segment.ENGAGED_FOCUS) == 5
        assert result.count(Segment.ENGAGED_ALL) == 3
        assert result.count(Segment.DISENGAGED_FOCUS) == 2
        assert result.summary() == {
            "total_users": 11,
            "engaged_focus_count": 5,
            "engaged_all_count": 3,
            "disengaged_focus_count": 2,
            "segmented_total": 10,
        }

    def test_segments_are_disjoint(self, population):
        result = segment_population(population + population[:4])
        names = [r.name for records in result.segments.values() for r in records]
        assert len(names) == len(set(names))
        assert result.total_users == 11

    def test_engaged_focus_not_repeated_in_engaged_all(self, population):
        result = segment_population(population)
        all_tab = {r.name for r in result.segments[Segment.ENGAGED_ALL]}
        assert not any(name.startswith("ef") for name in all_tab)

    def test_assign_segment_priority(self):
        assert assign_segment(candidate("a", True, ENGAGED)) == Segment.ENGAGED_FOCUS
        assert assign_segment(candidate("b", False, ENGAGED)) == Segment.ENGAGED_ALL
        assert assign_segment(candidate("c", True, DISENGAGED)) == Segment.DISENGAGED_FOCUS
        assert assign_segment(candidate("d", False, DISENGAGED)) is None

    def test_record_strips_internal_fields(self, population):
        result = segment_population(population)
        record = result.segments[Segment.ENGAGED_FOCUS][0].to_dict()
        assert set(record) == {"name", "phone", "city", "course", "stage", "registered_at"}


class TestFocusRegion:
    def test_matches_codes_and_names_case_insensitive(self):
        assert DEFAULT_FOCUS_REGION.contains("João Pessoa - pb")
        assert DEFAULT_FOCUS_REGION.contains(None, "", "Bahia")
        assert DEFAULT_FOCUS_REGION.contains("Natal", "rio grande do norte")

    def test_no_match(self):
        assert not DEFAULT_FOCUS_REGION.contains("São Paulo", None, "Minas Gerais")

    def test_custom_region(self):
        region = focus_region_from_config({"focus_region": {"name": "sul", "tokens": ["rs", "sc"]}})
        assert region == FocusRegion(name="sul", tokens=("RS", "SC"))
        assert region.contains("Porto Alegre - RS")

    def test_empty_tokens_rejected(self):
        with pytest.raises(ConfigError):
            focus_region_from_config({"focus_region": {"tokens": []}})
