"""Edge resolver - picks the single next block.

Among the outgoing edges whose condition holds, the highest priority wins
(default 0); ties go to the edge declared first. No match means the journey
is complete along this path.
"""

import logging

from journeyrun.engine.conditions import Facts, evaluate_edge_condition
from journeyrun.models.graph import Edge

logger = logging.getLogger(__name__)


def matching_edges(current_block_id: str, edges: list[Edge], facts: Facts) -> list[Edge]:
    """Outgoing edges of a block whose conditions hold, in declaration order."""
    return [
        edge
        for edge in edges
        if edge.from_ == current_block_id and evaluate_edge_condition(edge, facts)
    ]


def select_edge(current_block_id: str, edges: list[Edge], facts: Facts) -> Edge | None:
    """Return the winning edge, or None if nothing matches."""
    best: Edge | None = None
    for edge in matching_edges(current_block_id, edges, facts):
        # Strictly greater keeps the earliest-declared edge on ties
        if best is None or edge.effective_priority > best.effective_priority:
            best = edge
    return best


def find_next_block(current_block_id: str, edges: list[Edge], facts: Facts) -> str | None:
    """Resolve the id of the next block, or None when the path ends here."""
    edge = select_edge(current_block_id, edges, facts)
    if edge is None:
        logger.debug("No outgoing edge matched from %s", current_block_id)
        return None
    logger.debug(
        "Routing %s -> %s (priority=%s, label=%s)",
        current_block_id,
        edge.to,
        edge.effective_priority,
        edge.label,
    )
    return edge.to
