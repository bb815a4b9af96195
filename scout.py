# Giglet scout — brand-side creator search
# Pure filtering and sorting over creator records.

from dataclasses import dataclass, field
from typing import Optional

from errors import ValidationError
from models import Creator
from payouts import creator_following_count

SORT_KEYS = ("username", "location", "following", "submissions")


@dataclass
class ScoutFilters:
    location: str = ""
    interests: list = field(default_factory=list)
    has_social: str = ""                 # platform the creator must have linked
    min_following: Optional[int] = None
    min_following_platform: str = ""     # empty = total across platforms
    sort_by: str = "username"


def _following_on(creator: Creator, platform: str) -> int:
    if not platform:
        return creator_following_count(creator)
    return int((creator.following_count or {}).get(platform.lower()) or 0)


def _has_social(creator: Creator, platform: str) -> bool:
    platform = platform.lower()
    return bool((creator.socials or {}).get(platform)) or \
        bool((creator.social_connections or {}).get(platform))


def filter_creators(creators: list, filters: ScoutFilters) -> list:
    if filters.sort_by not in SORT_KEYS:
        raise ValidationError(f"sort_by must be one of {', '.join(SORT_KEYS)}")

    wanted_interests = {i.strip().lower() for i in filters.interests if i.strip()}
    location = filters.location.strip().lower()

    matches = []
    for creator in creators:
        if location and creator.location.strip().lower() != location:
            continue
        if wanted_interests:
            have = {i.strip().lower() for i in creator.interests}
            if not wanted_interests <= have:
                continue
        if filters.has_social and not _has_social(creator, filters.has_social):
            continue
        if filters.min_following is not None and \
                _following_on(creator, filters.min_following_platform) < filters.min_following:
            continue
        matches.append(creator)

    if filters.sort_by == "username":
        matches.sort(key=lambda c: c.username.lower())
    elif filters.sort_by == "location":
        matches.sort(key=lambda c: (c.location.lower(), c.username.lower()))
    elif filters.sort_by == "following":
        matches.sort(key=lambda c: -creator_following_count(c))
    else:
        matches.sort(key=lambda c: -c.metrics.submissions_count)
    return matches


def unique_locations(creators: list) -> list:
    return sorted({c.location.strip() for c in creators if c.location.strip()})


def all_interests(creators: list) -> list:
    return sorted({i.strip() for c in creators for i in c.interests if i.strip()})
