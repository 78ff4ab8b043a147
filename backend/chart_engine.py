"""Deterministic South-Indian chart engine.

Pure functions over the chart returned by the remote model: grid placement,
house strength, aspects (drishti) and dignity. No I/O and no shared mutable
state.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Callable, Iterable, NamedTuple, Sequence

from backend.chart_models import (
    AspectLine,
    BodyDetail,
    CelestialBody,
    CenterLabel,
    Chart,
    Dignity,
    GridCell,
    HouseSelection,
    SelectionDetail,
    house_for_sign,
    require_zodiac_range,
)

ENGINE_VERSION = "1.0.0"
ENGINE_SIGNATURE = "SOUTH_INDIAN_GRID_V1"

SIGN_NAMES = MappingProxyType({
    1: "Aries", 2: "Taurus", 3: "Gemini", 4: "Cancer",
    5: "Leo", 6: "Virgo", 7: "Libra", 8: "Scorpio",
    9: "Sagittarius", 10: "Capricorn", 11: "Aquarius", 12: "Pisces",
})

SIGN_ABBREVIATIONS = MappingProxyType({
    1: "Ar", 2: "Ta", 3: "Ge", 4: "Cn", 5: "Le", 6: "Vi",
    7: "Li", 8: "Sc", 9: "Sa", 10: "Cp", 11: "Aq", 12: "Pi",
})

SIGN_RULERS = MappingProxyType({
    1: "Mars", 2: "Venus", 3: "Mercury", 4: "Moon",
    5: "Sun", 6: "Mercury", 7: "Venus", 8: "Mars",
    9: "Jupiter", 10: "Saturn", 11: "Saturn", 12: "Jupiter",
})

# Pisces sits top-left and the ring runs clockwise; the 2x2 centre is the label.
SIGN_GRID_POSITIONS = MappingProxyType({
    1: (0, 1),
    2: (0, 2),
    3: (0, 3),
    4: (1, 3),
    5: (2, 3),
    6: (3, 3),
    7: (3, 2),
    8: (3, 1),
    9: (3, 0),
    10: (2, 0),
    11: (1, 0),
    12: (0, 0),
})
GRID_SIGNS = MappingProxyType({pos: sign_id for sign_id, pos in SIGN_GRID_POSITIONS.items()})
CENTER_CELLS = frozenset({(1, 1), (1, 2), (2, 1), (2, 2)})
GRID_SIZE = 4

KENDRA_HOUSES = frozenset({1, 4, 7, 10})
TRIKONA_HOUSES = frozenset({1, 5, 9})

# Full-strength drishti, counted inclusively from the occupied house (7 = opposite).
PLANET_ASPECTS = MappingProxyType({
    "Sun": (7,),
    "Moon": (7,),
    "Mars": (4, 7, 8),
    "Mercury": (7,),
    "Jupiter": (5, 7, 9),
    "Venus": (7,),
    "Saturn": (3, 7, 10),
    "Rahu": (5, 7, 9),
    "Ketu": (5, 7, 9),
})


class DignityRule(NamedTuple):
    exalted: int
    debilitated: int
    own: frozenset[int]


PLANET_DIGNITY = MappingProxyType({
    "Sun": DignityRule(1, 7, frozenset({5})),
    "Moon": DignityRule(2, 8, frozenset({4})),
    "Mars": DignityRule(10, 4, frozenset({1, 8})),
    # Virgo is Mercury's exaltation and own sign; exaltation takes precedence.
    "Mercury": DignityRule(6, 12, frozenset({3})),
    "Jupiter": DignityRule(4, 10, frozenset({9, 12})),
    "Venus": DignityRule(12, 6, frozenset({2, 7})),
    "Saturn": DignityRule(7, 1, frozenset({10, 11})),
    # Simplified node dignities
    "Rahu": DignityRule(2, 8, frozenset()),
    "Ketu": DignityRule(8, 2, frozenset()),
})

HOUSE_SIGNIFICATIONS = MappingProxyType({
    1: "Self, Personality, Physique, Beginnings",
    2: "Wealth, Family, Speech, Resources",
    3: "Courage, Siblings, Communication, Effort",
    4: "Mother, Home, Happiness, Comforts",
    5: "Children, Creativity, Romance, Past Karma",
    6: "Health, Enemies, Debt, Service",
    7: "Spouse, Partners, Marriage, Business",
    8: "Longevity, Transformation, Occult, Sudden Events",
    9: "Luck, Dharma, Father, Higher Learning",
    10: "Career, Status, Authority, Karma",
    11: "Gains, Income, Friends, Desires",
    12: "Losses, Spirituality, Isolation, Foreign Lands",
})

PLANET_SIGNIFICATIONS = MappingProxyType({
    "Sun": "Soul, Ego, Vitality, Father, Authority",
    "Moon": "Mind, Emotions, Comfort, Mother",
    "Mars": "Energy, Courage, Action, Siblings",
    "Mercury": "Intellect, Communication, Business, Logic",
    "Jupiter": "Wisdom, Expansion, Wealth, Children",
    "Venus": "Love, Beauty, Luxury, Relationships",
    "Saturn": "Discipline, Karma, Delay, Longevity",
    "Rahu": "Desire, Illusion, Foreign, Innovation",
    "Ketu": "Detachment, Spirituality, Liberation",
})
DEFAULT_SIGNIFICATION = "Planetary influence"

StrengthFn = Callable[[int, int], int]


def body_signification(body_name: str) -> str:
    return PLANET_SIGNIFICATIONS.get(body_name, DEFAULT_SIGNIFICATION)


def _wrap_offset(start: int, offset: int) -> int:
    """Count `offset` places inclusively from `start` around the 12-ring."""
    return ((start + offset - 2) % 12) + 1


def _cell_center(sign_id: int) -> tuple[float, float]:
    row, col = SIGN_GRID_POSITIONS[sign_id]
    step = 100.0 / GRID_SIZE
    return col * step + step / 2, row * step + step / 2


# ------------------------------------------------------------------------------
# Grid mapping
# ------------------------------------------------------------------------------
def house_strength(house: int, occupant_count: int) -> int:
    """Cosmetic 20..100 intensity for the strength bar. Not a chart-strength measure."""
    require_zodiac_range(house, "house")
    strength = 20 + 15 * max(0, occupant_count)
    if house in KENDRA_HOUSES:
        strength += 25
    if house in TRIKONA_HOUSES:
        strength += 25
    return min(strength, 100)


def strength_band(strength: int) -> str:
    if strength > 75:
        return "high"
    if strength > 50:
        return "medium"
    if strength > 30:
        return "low"
    return "minimal"


def bodies_in_sign(bodies: Iterable[CelestialBody], sign_id: int) -> list[CelestialBody]:
    return [b for b in bodies if b.sign_id == sign_id]


def bodies_in_house(bodies: Iterable[CelestialBody], house: int) -> list[CelestialBody]:
    return [b for b in bodies if b.house == house]


def place_on_grid(
    ascendant_sign_id: int,
    bodies: Sequence[CelestialBody],
    strength_fn: StrengthFn = house_strength,
) -> dict[tuple[int, int], GridCell]:
    """Map each sign to its outer grid cell, keyed by (row, col).

    The four centre cells never appear in the result; see `center_label()`.
    """
    require_zodiac_range(ascendant_sign_id, "ascendant_sign_id")
    grid: dict[tuple[int, int], GridCell] = {}
    for sign_id, (row, col) in SIGN_GRID_POSITIONS.items():
        occupants = bodies_in_sign(bodies, sign_id)
        house = house_for_sign(sign_id, ascendant_sign_id)
        strength = strength_fn(house, len(occupants))
        grid[(row, col)] = GridCell(
            row=row,
            col=col,
            sign_id=sign_id,
            sign_name=SIGN_NAMES[sign_id],
            abbreviation=SIGN_ABBREVIATIONS[sign_id],
            house=house,
            is_ascendant=sign_id == ascendant_sign_id,
            occupants=tuple(occupants),
            strength=strength,
            strength_band=strength_band(strength),
        )
    return grid


def chart_grid(chart: Chart, strength_fn: StrengthFn = house_strength) -> dict[tuple[int, int], GridCell]:
    return place_on_grid(chart.ascendant.sign_id, chart.bodies, strength_fn)


def center_label() -> CenterLabel:
    return CenterLabel()


def grid_occupants(grid: dict[tuple[int, int], GridCell]) -> list[CelestialBody]:
    """Flatten occupants back out of a grid, in ring order."""
    out: list[CelestialBody] = []
    for sign_id in sorted(SIGN_GRID_POSITIONS):
        out.extend(grid[SIGN_GRID_POSITIONS[sign_id]].occupants)
    return out


# ------------------------------------------------------------------------------
# Selection
# ------------------------------------------------------------------------------
def select_cell(chart: Chart, sign_id: int) -> HouseSelection:
    """Selection emitted by clicking a grid cell: keyed by sign."""
    require_zodiac_range(sign_id)
    return HouseSelection(
        sign_id=sign_id,
        house=house_for_sign(sign_id, chart.ascendant.sign_id),
        bodies=tuple(bodies_in_sign(chart.bodies, sign_id)),
    )


def select_body_house(chart: Chart, body_index: int) -> HouseSelection:
    """Selection emitted by clicking a body's table row: keyed by that body's house."""
    if not 0 <= body_index < len(chart.bodies):
        raise IndexError(f"body_index {body_index} out of range for {len(chart.bodies)} bodies")
    body = chart.bodies[body_index]
    return HouseSelection(
        sign_id=body.sign_id,
        house=body.house,
        bodies=tuple(bodies_in_house(chart.bodies, body.house)),
    )


# ------------------------------------------------------------------------------
# Aspects
# ------------------------------------------------------------------------------
def aspected_houses(source_house: int, body_name: str) -> list[int]:
    """Houses aspected by `body_name` from `source_house`, ascending and distinct.

    Unknown bodies have no aspects.
    """
    require_zodiac_range(source_house, "source_house")
    offsets = PLANET_ASPECTS.get(body_name, ())
    return sorted({_wrap_offset(source_house, d) for d in offsets})


def aspected_bodies(targets: Iterable[int], all_bodies: Iterable[CelestialBody]) -> list[CelestialBody]:
    wanted = {require_zodiac_range(h, "house") for h in targets}
    return [b for b in all_bodies if b.house in wanted]


def aspect_lines(selection: HouseSelection) -> list[AspectLine]:
    """Overlay arrows from the selected sign's cell to each aspected sign's cell.

    A target sign already drawn for an earlier occupant is skipped.
    """
    if not selection.bodies:
        return []
    x1, y1 = _cell_center(selection.sign_id)
    drawn: set[int] = set()
    lines: list[AspectLine] = []
    for body in selection.bodies:
        for offset in PLANET_ASPECTS.get(body.name, ()):
            target = _wrap_offset(selection.sign_id, offset)
            if target in drawn:
                continue
            drawn.add(target)
            x2, y2 = _cell_center(target)
            lines.append(AspectLine(
                body=body.name,
                source_sign_id=selection.sign_id,
                target_sign_id=target,
                x1=x1, y1=y1, x2=x2, y2=y2,
            ))
    return lines


# ------------------------------------------------------------------------------
# Dignity
# ------------------------------------------------------------------------------
def classify_dignity(body_name: str, sign_id: int) -> Dignity:
    require_zodiac_range(sign_id)
    rule = PLANET_DIGNITY.get(body_name)
    if rule is None:
        return Dignity.ordinary
    if sign_id == rule.exalted:
        return Dignity.exalted
    if sign_id == rule.debilitated:
        return Dignity.debilitated
    if sign_id in rule.own:
        return Dignity.own_sign
    return Dignity.ordinary


# ------------------------------------------------------------------------------
# Detail view
# ------------------------------------------------------------------------------
def describe_selection(chart: Chart, selection: HouseSelection) -> SelectionDetail:
    """Expand a selection with ruler, significations, dignity and aspects per occupant.

    Aspects are counted from the selected house; dignity uses each occupant's own sign.
    """
    details: list[BodyDetail] = []
    for body in selection.bodies:
        targets = aspected_houses(selection.house, body.name)
        details.append(BodyDetail(
            name=body.name,
            sign_id=body.sign_id,
            house=body.house,
            is_retrograde=body.is_retrograde,
            dignity=classify_dignity(body.name, body.sign_id),
            signification=body_signification(body.name),
            aspected_houses=targets,
            aspected_bodies=aspected_bodies(targets, chart.bodies),
        ))
    return SelectionDetail(
        sign_id=selection.sign_id,
        sign_name=SIGN_NAMES[selection.sign_id],
        house=selection.house,
        ruler=SIGN_RULERS[selection.sign_id],
        house_signification=HOUSE_SIGNIFICATIONS[selection.house],
        bodies=details,
        aspect_lines=aspect_lines(selection),
    )


def grid_payload(chart: Chart) -> dict:
    """JSON-ready grid: outer cells in row-major order plus the centre label."""
    grid = chart_grid(chart)
    cells = [grid[pos].model_dump(mode="json") for pos in sorted(grid)]
    return {
        "ascendant": chart.ascendant.model_dump(mode="json"),
        "rashi": chart.rashi,
        "day": chart.day,
        "cells": cells,
        "center": center_label().model_dump(mode="json"),
    }
