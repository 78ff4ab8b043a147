"""Typed chart values shared by the chart engine, the AI layer and the API.

A chart arrives from the remote model as JSON of the shape::

    {"ascendant": {"sign_id": 5, "sign_name": "Leo"},
     "rashi": "Aries (Mesh)", "day": "Monday (Somvaar)",
     "planets": [{"name": "Sun", "sign_id": 1, "house": 9, "is_retro": false}, ...]}

Both the wire names (`planets`, `is_retro`) and the descriptive names
(`bodies`, `is_retrograde`) are accepted.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class InvalidRangeError(ValueError):
    """A sign id or house number outside 1..12."""


def require_zodiac_range(value: int, label: str = "sign_id") -> int:
    """Return `value` unchanged if it is an int in 1..12, else raise InvalidRangeError."""
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 12:
        raise InvalidRangeError(f"{label} must be an integer in 1..12, got {value!r}")
    return value


def house_for_sign(sign_id: int, ascendant_sign_id: int) -> int:
    """Whole-sign house of `sign_id` counted from the ascendant (ascendant = house 1)."""
    require_zodiac_range(sign_id, "sign_id")
    require_zodiac_range(ascendant_sign_id, "ascendant_sign_id")
    return ((sign_id - ascendant_sign_id + 12) % 12) + 1


class Dignity(str, Enum):
    exalted = "Exalted"
    debilitated = "Debilitated"
    own_sign = "Own Sign"
    ordinary = "Ordinary"


class Ascendant(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sign_id: int = Field(..., validation_alias=AliasChoices("sign_id", "signId"))
    sign_name: str = Field("", validation_alias=AliasChoices("sign_name", "signName"))

    @field_validator("sign_id")
    @classmethod
    def check_sign(cls, value: int) -> int:
        return require_zodiac_range(value, "ascendant.sign_id")


class CelestialBody(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    sign_id: int = Field(..., validation_alias=AliasChoices("sign_id", "signId"))
    house: Optional[int] = None
    is_retrograde: bool = Field(False, validation_alias=AliasChoices("is_retrograde", "is_retro", "isRetrograde"))

    @field_validator("sign_id")
    @classmethod
    def check_sign(cls, value: int) -> int:
        return require_zodiac_range(value, "sign_id")

    @field_validator("house")
    @classmethod
    def check_house(cls, value: Optional[int]) -> Optional[int]:
        if value is None:
            return None
        return require_zodiac_range(value, "house")

    @property
    def short_label(self) -> str:
        """Two-letter grid label, e.g. `Sa (R)`."""
        return f"{self.name[:2]}{' (R)' if self.is_retrograde else ''}"


class Chart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ascendant: Ascendant
    rashi: str = ""
    day: str = ""
    bodies: list[CelestialBody] = Field(
        default_factory=list,
        validation_alias=AliasChoices("bodies", "planets"),
    )

    @model_validator(mode="after")
    def fill_missing_houses(self) -> "Chart":
        # A supplied house is authoritative; only missing ones are derived.
        asc = self.ascendant.sign_id
        self.bodies = [
            body if body.house is not None
            else body.model_copy(update={"house": house_for_sign(body.sign_id, asc)})
            for body in self.bodies
        ]
        return self

    def to_wire(self) -> dict:
        """Serialize back to the shape the remote model produces."""
        return {
            "ascendant": {"sign_id": self.ascendant.sign_id, "sign_name": self.ascendant.sign_name},
            "rashi": self.rashi,
            "day": self.day,
            "planets": [
                {"name": b.name, "sign_id": b.sign_id, "house": b.house, "is_retro": b.is_retrograde}
                for b in self.bodies
            ],
        }


class HouseSelection(BaseModel):
    """The house currently inspected in the UI. Never persisted."""

    model_config = ConfigDict(frozen=True)

    sign_id: int
    house: int
    bodies: tuple[CelestialBody, ...] = ()

    @field_validator("sign_id", "house")
    @classmethod
    def check_range(cls, value: int, info) -> int:
        return require_zodiac_range(value, info.field_name)


class GridCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    row: int
    col: int
    sign_id: int
    sign_name: str
    abbreviation: str
    house: int
    is_ascendant: bool
    occupants: tuple[CelestialBody, ...]
    strength: int
    strength_band: str


class CenterLabel(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: tuple[int, int] = (1, 2)
    cols: tuple[int, int] = (1, 2)
    title: str = "Lagna Chart"
    subtitle: str = "South Indian Style"
    hint: str = "Select house for aspects"


class AspectLine(BaseModel):
    """One overlay arrow between two cell centres, coordinates in percent of the grid."""

    model_config = ConfigDict(frozen=True)

    body: str
    source_sign_id: int
    target_sign_id: int
    x1: float
    y1: float
    x2: float
    y2: float


class BodyDetail(BaseModel):
    name: str
    sign_id: int
    house: int
    is_retrograde: bool
    dignity: Dignity
    signification: str
    aspected_houses: list[int]
    aspected_bodies: list[CelestialBody]


class SelectionDetail(BaseModel):
    sign_id: int
    sign_name: str
    house: int
    ruler: str
    house_signification: str
    bodies: list[BodyDetail]
    aspect_lines: list[AspectLine]


# ------------------------------------------------------------------------------
# AI integration payloads
# ------------------------------------------------------------------------------
class BirthDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    birth_date: str = Field(..., min_length=1, validation_alias=AliasChoices("birth_date", "birthDate"))
    birth_time: str = Field(..., min_length=1, validation_alias=AliasChoices("birth_time", "birthTime"))
    birth_place: str = Field(..., min_length=1, validation_alias=AliasChoices("birth_place", "birthPlace"))
    question: Optional[str] = Field(None, max_length=2000)


class KundliResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    markdown: str = Field(..., validation_alias=AliasChoices("markdown", "prediction_markdown"))
    chart_data: Chart


class ChatMessage(BaseModel):
    id: str = ""
    role: Literal["user", "model"]
    text: str
    is_error: bool = Field(False, validation_alias=AliasChoices("is_error", "isError"))


class ImageSize(str, Enum):
    one_k = "1K"
    two_k = "2K"
    four_k = "4K"


class SourceLink(BaseModel):
    title: str
    url: str


class SearchAnswer(BaseModel):
    text: str
    sources: list[SourceLink] = Field(default_factory=list)

    def with_sources_footer(self) -> str:
        if not self.sources:
            return self.text
        links = ", ".join(f"[{s.title or s.url}]({s.url})" for s in self.sources)
        return f"{self.text}\n\n**Sources:** {links}"
