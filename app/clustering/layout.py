"""
Normalization of graph layouts.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional

from app.clustering.exceptions import ClusteringError
from app.clustering.models import ModuleNode, Point


@dataclass
class NormalizedLayout:
    nodes: Dict[int, ModuleNode]
    scale: float
    center: Point
    module_id: Optional[int]


def normalize_layout(positions: Dict[int, ModuleNode], center: Optional[Point] = None) -> NormalizedLayout:
    """
    Normalize raw node positions to the unit disk.

    The centre defaults to the box centre of the positions. The scale is the
    distance of the farthest node, which is also reported so renderers can
    reproduce the layout.

    Args:
        positions: Module id -> node in layout (screen) coordinates
        center: Optional fixed centre

    Returns:
        NormalizedLayout with nodes in normalized space
    """
    if not positions:
        raise ClusteringError("Cannot normalize an empty layout")

    if center is None:
        xs = [node.x for node in positions.values()]
        ys = [node.y for node in positions.values()]
        center = Point((min(xs) + max(xs)) / 2, (min(ys) + max(ys)) / 2)

    scale = 0.0
    farthest = None
    for module_id, node in positions.items():
        distance = math.hypot(node.x - center.x, node.y - center.y)
        if distance > scale:
            scale = distance
            farthest = module_id

    if scale == 0.0:
        scale = 1.0

    nodes = {
        module_id: ModuleNode(
            x=(node.x - center.x) / scale,
            y=(node.y - center.y) / scale,
            visible=node.visible,
        )
        for module_id, node in positions.items()
    }
    return NormalizedLayout(nodes=nodes, scale=scale, center=center, module_id=farthest)
