"""Point scoring and detail normalization for achievements.

``score`` is pure: it reads the raw, client-supplied detail mapping, keeps the
keys it understands for the given type and passes everything else through in
``custom_fields``. Calling it twice with the same input yields the same output.
"""
import copy
from datetime import date
from typing import Any, Callable, Mapping, NamedTuple

from app.core.errors import InvalidType
from app.schemas.achievement import (
    AcademicDetails,
    AchievementType,
    CertificationDetails,
    CompetitionDetails,
    DetailsBase,
    OrganizationDetails,
    OtherDetails,
    PublicationDetails,
)

BASE_POINTS = {
    AchievementType.competition: 100,
    AchievementType.publication: 150,
    AchievementType.certification: 75,
    AchievementType.organization: 50,
    AchievementType.academic: 25,
    AchievementType.other: 10,
}

COMPETITION_LEVEL_BONUS = {
    "international": 200,
    "national": 100,
    "regional": 50,
    "local": 25,
}

RANK_BONUS = {1: 100, 2: 75, 3: 50}

PUBLICATION_TYPE_BONUS = {
    "journal": 100,
    "conference": 75,
    "book": 150,
}

_MISSING = object()


class ScoreResult(NamedTuple):
    points: int
    details: DetailsBase


def _text(value: Any) -> Any:
    return value if isinstance(value, str) else _MISSING


def _keyword(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else _MISSING


def _number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _MISSING
    return float(value)


def _whole_number(value: Any) -> Any:
    if isinstance(value, bool):
        return _MISSING
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return _MISSING


def _iso_date(value: Any) -> Any:
    if not isinstance(value, str):
        return _MISSING
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        return _MISSING


def _string_list(value: Any) -> Any:
    if not isinstance(value, list):
        return _MISSING
    return [item for item in value if isinstance(item, str)]


Normalizer = Callable[[Any], Any]

COMMON_FIELDS: dict[str, Normalizer] = {
    "event_date": _iso_date,
    "location": _text,
    "organizer": _text,
    "score": _number,
}

TYPE_FIELDS: dict[AchievementType, tuple[type[DetailsBase], dict[str, Normalizer]]] = {
    AchievementType.competition: (CompetitionDetails, {
        "competition_name": _text,
        "competition_level": _keyword,
        "rank": _whole_number,
        "medal_type": _keyword,
    }),
    AchievementType.publication: (PublicationDetails, {
        "publication_type": _keyword,
        "publication_title": _text,
        "authors": _string_list,
        "publisher": _text,
        "issn": _text,
        "journal_name": _text,
    }),
    AchievementType.organization: (OrganizationDetails, {
        "organization_name": _text,
        "position": _text,
        "period_start": _iso_date,
        "period_end": _iso_date,
    }),
    AchievementType.certification: (CertificationDetails, {
        "certification_name": _text,
        "issued_by": _text,
        "certification_number": _text,
        "valid_until": _iso_date,
    }),
    AchievementType.academic: (AcademicDetails, {
        "semester": _whole_number,
        "gpa": _number,
    }),
    AchievementType.other: (OtherDetails, {}),
}

# Short spellings clients send for declared keys.
FIELD_ALIASES: dict[AchievementType, dict[str, str]] = {
    AchievementType.competition: {
        "level": "competition_level",
        "medal": "medal_type",
    },
}


def parse_type(value: Any) -> AchievementType:
    if isinstance(value, AchievementType):
        return value
    try:
        return AchievementType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in AchievementType)
        raise InvalidType(f"Unknown achievement type {value!r}; expected one of: {allowed}") from None


def normalize_details(achievement_type: AchievementType, raw: Mapping[str, Any] | None) -> DetailsBase:
    model, type_fields = TYPE_FIELDS[achievement_type]
    declared = {**COMMON_FIELDS, **type_fields}
    aliases = FIELD_ALIASES.get(achievement_type, {})
    raw = raw or {}

    values: dict[str, Any] = {}
    custom: dict[str, Any] = {}

    for key, value in raw.items():
        if key == "custom_fields" and isinstance(value, Mapping):
            custom.update(value)
            continue
        name = aliases.get(key, key)
        if name != key and name in raw:
            custom[key] = value
            continue
        normalizer = declared.get(name)
        if normalizer is None:
            custom[key] = value
            continue
        if value is None:
            continue
        normalized = normalizer(value)
        if normalized is _MISSING:
            # Declared key with a shape we cannot read: keep it, do not interpret it.
            custom[key] = value
        else:
            values[name] = normalized

    return model(**values, custom_fields=copy.deepcopy(custom))


def points_for(achievement_type: AchievementType, details: DetailsBase) -> int:
    points = BASE_POINTS[achievement_type]

    if isinstance(details, CompetitionDetails):
        points += COMPETITION_LEVEL_BONUS.get(details.competition_level or "", 0)
        points += RANK_BONUS.get(details.rank, 0)

    if isinstance(details, PublicationDetails):
        points += PUBLICATION_TYPE_BONUS.get(details.publication_type or "", 0)

    return points


def score(achievement_type: AchievementType | str, raw: Mapping[str, Any] | None) -> ScoreResult:
    kind = parse_type(achievement_type)
    details = normalize_details(kind, raw)
    return ScoreResult(points=points_for(kind, details), details=details)
