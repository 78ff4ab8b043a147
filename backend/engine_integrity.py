from backend.chart_engine import (
    CENTER_CELLS,
    ENGINE_SIGNATURE,
    ENGINE_VERSION,
    GRID_SIZE,
    PLANET_ASPECTS,
    PLANET_DIGNITY,
    SIGN_GRID_POSITIONS,
)

EXPECTED_VERSION = "1.0.0"
EXPECTED_SIGNATURE = "SOUTH_INDIAN_GRID_V1"


def _table_errors() -> list[str]:
    errors: list[str] = []

    positions = list(SIGN_GRID_POSITIONS.values())
    if sorted(SIGN_GRID_POSITIONS) != list(range(1, 13)):
        errors.append("Grid table must cover signs 1..12 exactly.")
    if len(set(positions)) != len(positions):
        errors.append("Grid table assigns two signs to one cell.")
    for row, col in positions:
        if not (0 <= row < GRID_SIZE and 0 <= col < GRID_SIZE):
            errors.append(f"Grid cell ({row}, {col}) is outside the {GRID_SIZE}x{GRID_SIZE} grid.")
        if (row, col) in CENTER_CELLS:
            errors.append(f"Grid cell ({row}, {col}) is a centre label cell.")

    for body, offsets in PLANET_ASPECTS.items():
        if not offsets or any(not 1 <= d <= 12 for d in offsets):
            errors.append(f"Aspect offsets for {body} must be non-empty and within 1..12.")

    for body, rule in PLANET_DIGNITY.items():
        if rule.exalted == rule.debilitated:
            errors.append(f"{body} exaltation and debilitation share sign {rule.exalted}.")
        if rule.exalted in rule.own or rule.debilitated in rule.own:
            errors.append(f"{body} own-sign set overlaps exaltation/debilitation.")
        if any(not 1 <= s <= 12 for s in (rule.exalted, rule.debilitated, *rule.own)):
            errors.append(f"{body} dignity table holds a sign outside 1..12.")

    return errors


# NOTE:
# Version and signature are hard-locked.
# Any change to the lookup tables requires bumping both sides together.
def validate_engine_integrity() -> bool:
    errors: list[str] = []

    if ENGINE_VERSION != EXPECTED_VERSION:
        errors.append(f"Version mismatch: {ENGINE_VERSION} != {EXPECTED_VERSION}")

    if ENGINE_SIGNATURE != EXPECTED_SIGNATURE:
        errors.append("Engine structural signature mismatch.")

    errors.extend(_table_errors())

    if errors:
        raise RuntimeError("ENGINE INTEGRITY FAILURE:\n" + "\n".join(errors))

    return True
