"""
Layout Engine

Places a batch of new nodes relative to an anchor point.
Offsets use integer division on the count, so a horizontal row of three
around x=0 lands at -250, 0, 250.
"""

from __future__ import annotations

import math
from typing import List, Union

from schemas.idea_schema import LayoutStrategy, Position

RADIAL_RADIUS = 200.0
HORIZONTAL_SPACING = 250.0
VERTICAL_SPACING = 150.0


def compute_positions(
    anchor_x: float,
    anchor_y: float,
    count: int,
    strategy: Union[str, LayoutStrategy] = LayoutStrategy.GRID,
) -> List[Position]:
    """
    Compute `count` positions around (anchor_x, anchor_y).

    Args:
        anchor_x: Anchor x coordinate (usually the parent node)
        anchor_y: Anchor y coordinate
        count: Number of positions
        strategy: radial | horizontal | vertical | grid (anything else is grid)

    Returns:
        List of exactly `count` positions (empty for count <= 0)
    """
    if count <= 0:
        return []

    layout = LayoutStrategy.parse(strategy)

    if layout == LayoutStrategy.RADIAL:
        # count == 1 sits on the circle at angle 0, not on the anchor
        step = 2 * math.pi / count
        return [
            Position(
                x=anchor_x + RADIAL_RADIUS * math.cos(i * step),
                y=anchor_y + RADIAL_RADIUS * math.sin(i * step),
            )
            for i in range(count)
        ]

    if layout == LayoutStrategy.HORIZONTAL:
        return [
            Position(x=anchor_x + (i - count // 2) * HORIZONTAL_SPACING, y=anchor_y)
            for i in range(count)
        ]

    if layout == LayoutStrategy.VERTICAL:
        return [
            Position(x=anchor_x, y=anchor_y + (i - count // 2) * VERTICAL_SPACING)
            for i in range(count)
        ]

    cols = int(math.ceil(math.sqrt(count)))
    positions = []
    for i in range(count):
        row, col = divmod(i, cols)
        positions.append(Position(
            x=anchor_x + (col - cols // 2) * HORIZONTAL_SPACING,
            y=anchor_y + (row - count // (2 * cols)) * VERTICAL_SPACING,
        ))
    return positions


class LayoutEngine:
    """Thin object wrapper so the pipeline can take a layout collaborator"""

    def compute_positions(
        self,
        anchor_x: float,
        anchor_y: float,
        count: int,
        strategy: Union[str, LayoutStrategy] = LayoutStrategy.GRID,
    ) -> List[Position]:
        return compute_positions(anchor_x, anchor_y, count, strategy)
