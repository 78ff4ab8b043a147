"""House selection state machine for the chart view.

States are `NoSelection` and `HouseSelected`; events are `CellSelected`,
`BodyRowSelected` and `Dismissed`. `transition()` is pure; `ChartSelection`
only remembers the current state for one chart.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from backend.chart_engine import describe_selection, select_body_house, select_cell
from backend.chart_models import Chart, HouseSelection, SelectionDetail, require_zodiac_range

logger = logging.getLogger("kundli_gpt")


class NoSelection(BaseModel):
    kind: Literal["none"] = "none"


class HouseSelected(BaseModel):
    kind: Literal["house"] = "house"
    selection: HouseSelection


SelectionState = Annotated[Union[NoSelection, HouseSelected], Field(discriminator="kind")]


class CellSelected(BaseModel):
    type: Literal["cell"] = "cell"
    sign_id: int

    @field_validator("sign_id")
    @classmethod
    def check_sign(cls, value: int) -> int:
        return require_zodiac_range(value)


class BodyRowSelected(BaseModel):
    type: Literal["body_row"] = "body_row"
    body_index: int = Field(..., ge=0)


class Dismissed(BaseModel):
    type: Literal["dismiss"] = "dismiss"


SelectionEvent = Annotated[Union[CellSelected, BodyRowSelected, Dismissed], Field(discriminator="type")]


def transition(state: SelectionState, event: SelectionEvent, chart: Chart) -> SelectionState:
    """Next state for `event`. Any selection replaces the current one."""
    _ = state
    if isinstance(event, CellSelected):
        return HouseSelected(selection=select_cell(chart, event.sign_id))
    if isinstance(event, BodyRowSelected):
        return HouseSelected(selection=select_body_house(chart, event.body_index))
    if isinstance(event, Dismissed):
        return NoSelection()
    raise TypeError(f"Unsupported selection event: {type(event).__name__}")


def detail_for(state: SelectionState, chart: Chart) -> Optional[SelectionDetail]:
    if isinstance(state, HouseSelected):
        return describe_selection(chart, state.selection)
    return None


class ChartSelection:
    """Current selection for one chart."""

    def __init__(self, chart: Chart):
        self.chart = chart
        self.state: SelectionState = NoSelection()

    @property
    def selection(self) -> Optional[HouseSelection]:
        return self.state.selection if isinstance(self.state, HouseSelected) else None

    def dispatch(self, event: SelectionEvent) -> SelectionState:
        self.state = transition(self.state, event, self.chart)
        logger.debug("chart selection event=%s state=%s", event.type, self.state.kind)
        return self.state

    def select_cell(self, sign_id: int) -> SelectionState:
        return self.dispatch(CellSelected(sign_id=sign_id))

    def select_body(self, body_index: int) -> SelectionState:
        return self.dispatch(BodyRowSelected(body_index=body_index))

    def dismiss(self) -> SelectionState:
        return self.dispatch(Dismissed())

    def detail(self) -> Optional[SelectionDetail]:
        return detail_for(self.state, self.chart)
