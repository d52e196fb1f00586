"""Interest map layout helpers. Node coordinates are percentages of the canvas."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .types import RoadmapData, RoadmapNode

PREDEFINED_CATEGORIES = [
    "Sports", "IT", "Art", "Business", "Science", "Cooking", "Gaming", "Lifestyle",
]


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def drag_to_percent(px: float, py: float, width: float, height: float) -> Tuple[float, float]:
    """Convert a pointer position inside the canvas to clamped percentages."""
    if width <= 0 or height <= 0:
        raise ValueError("Canvas size must be positive")
    return clamp_percent(px / width * 100), clamp_percent(py / height * 100)


def move_node(roadmap: RoadmapData, node_id: str, x: float, y: float) -> RoadmapData:
    """Return a copy of the map with one node repositioned. Unknown ids leave it as is."""
    nodes: List[RoadmapNode] = [
        node.model_copy(update={"x": clamp_percent(x), "y": clamp_percent(y)})
        if node.id == node_id
        else node
        for node in roadmap.nodes
    ]
    return roadmap.model_copy(update={"nodes": nodes})


def node_index(roadmap: RoadmapData) -> Dict[str, RoadmapNode]:
    return {node.id: node for node in roadmap.nodes}


def find_node(roadmap: RoadmapData, node_id: str) -> Optional[RoadmapNode]:
    return node_index(roadmap).get(node_id)


def edge_segments(roadmap: RoadmapData) -> List[Tuple[RoadmapNode, RoadmapNode]]:
    """Edges resolved to node pairs; edges pointing at missing nodes are skipped."""
    index = node_index(roadmap)
    return [
        (index[edge.source], index[edge.target])
        for edge in roadmap.edges
        if edge.source in index and edge.target in index
    ]


__all__ = [
    "PREDEFINED_CATEGORIES",
    "clamp_percent",
    "drag_to_percent",
    "move_node",
    "find_node",
    "edge_segments",
]
