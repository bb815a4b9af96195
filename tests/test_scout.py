"""Tests for Giglet scout — brand-side creator filtering and sorting."""

import pytest

from errors import ValidationError
from models import Creator, CreatorMetrics
from scout import ScoutFilters, all_interests, filter_creators, unique_locations


def _creators():
    return [
        Creator(id="c1", username="zoe", location="Austin", interests=["Food", "Travel"],
                socials={"tiktok": "@zoe"}, following_count={"tiktok": 12_000},
                metrics=CreatorMetrics(submissions_count=3)),
        Creator(id="c2", username="adam", location="Boston", interests=["tech"],
                social_connections={"instagram": True}, following_count={"instagram": 800},
                metrics=CreatorMetrics(submissions_count=9)),
        Creator(id="c3", username="Mia", location="austin ", interests=["food"],
                following_count={"tiktok": 300, "youtube": 4_000}),
    ]


class TestFilterCreators:
    def test_default_sort_username(self):
        assert [c.username for c in filter_creators(_creators(), ScoutFilters())] == \
            ["adam", "Mia", "zoe"]

    def test_location_case_insensitive(self):
        found = filter_creators(_creators(), ScoutFilters(location="AUSTIN"))
        assert {c.id for c in found} == {"c1", "c3"}

    def test_interests_must_all_match(self):
        found = filter_creators(_creators(), ScoutFilters(interests=["food", "travel"]))
        assert [c.id for c in found] == ["c1"]

    def test_has_social(self):
        found = filter_creators(_creators(), ScoutFilters(has_social="instagram"))
        assert [c.id for c in found] == ["c2"]

    def test_min_following_total(self):
        found = filter_creators(_creators(), ScoutFilters(min_following=4_000))
        assert {c.id for c in found} == {"c1", "c3"}

    def test_min_following_platform(self):
        found = filter_creators(_creators(), ScoutFilters(min_following=1_000,
                                                          min_following_platform="tiktok"))
        assert [c.id for c in found] == ["c1"]

    def test_sort_by_following(self):
        found = filter_creators(_creators(), ScoutFilters(sort_by="following"))
        assert [c.id for c in found] == ["c1", "c3", "c2"]

    def test_sort_by_submissions(self):
        found = filter_creators(_creators(), ScoutFilters(sort_by="submissions"))
        assert [c.id for c in found] == ["c2", "c1", "c3"]

    def test_bad_sort_key(self):
        with pytest.raises(ValidationError):
            filter_creators(_creators(), ScoutFilters(sort_by="rep"))


class TestFacets:
    def test_unique_locations(self):
        assert unique_locations(_creators()) == ["Austin", "Boston", "austin"]

    def test_all_interests(self):
        assert all_interests(_creators()) == ["Food", "Travel", "food", "tech"]
