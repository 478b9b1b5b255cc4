"""
Flow Graph

Stage list <-> canvas node/edge conversion, pure mutations of the stage list,
and a NetworkX view of the navigation graph for diagnostics.

Mutations never modify their input: they return a new list in which only the
touched stages are copied; every other stage object is shared.
"""

from typing import Any, Callable, Iterable, Optional, Union
import networkx as nx

from .flow_types import Stage, Connection, Position, FlowNode, FlowEdge
from .flow_settings import FlowSettings
from .navigation import DEFAULT_HANDLE, describe_stage, stage_has_no_navigation


NODE_TYPES = {"edit": "stage", "analytics": "analyticsStage"}
EDGE_TYPES = {"edit": "smoothstep", "analytics": "animated"}

ConnectionPredicate = Callable[[Stage, Connection], bool]


def _check_mode(mode: str) -> str:
    if mode not in NODE_TYPES:
        raise ValueError(f"Unknown canvas mode: {mode!r} (expected 'edit' or 'analytics')")
    return mode


# ============================================================================
# Layout
# ============================================================================

def grid_position(index: int, col_width: float, row_height: float, settings: Optional[FlowSettings] = None) -> Position:
    """Position of the index-th node on the auto-layout grid."""
    settings = settings or FlowSettings()
    cols = settings.grid_columns
    return Position(
        x=settings.grid_origin_x + (index % cols) * col_width,
        y=settings.grid_origin_y + (index // cols) * row_height,
    )


# ============================================================================
# Stages -> canvas
# ============================================================================

def to_nodes(
    stages: list[Stage],
    selected_id: Optional[str] = None,
    mode: str = "edit",
    settings: Optional[FlowSettings] = None,
) -> list[FlowNode]:
    """
    One node per stage, in stage order.

    Stages without a stored position are placed on the grid by their index.
    Node data carries the label, 1-based index, components and the stage's
    connection handles.
    """
    mode = _check_mode(mode)
    settings = settings or FlowSettings()
    col_width, row_height = settings.grid_spacing(mode)

    nodes = []
    for index, stage in enumerate(stages):
        position = stage.position or grid_position(index, col_width, row_height, settings)
        eligibility = describe_stage(stage)
        data: dict[str, Any] = {
            "label": stage.name,
            "components": [c.model_dump(by_alias=True, exclude_none=True) for c in stage.components],
            "index": index + 1,
            "isSelected": stage.id == selected_id,
            "handles": eligibility["components"],
            "hasNoNavigation": eligibility["hasNoNavigation"],
        }
        if mode == "edit":
            data["hiddenCount"] = max(0, len(stage.components) - settings.max_visible_components)
        nodes.append(FlowNode(
            id=stage.id,
            type=NODE_TYPES[mode],
            position=position,
            data=data,
            selected=stage.id == selected_id,
        ))
    return nodes


def edge_id(source_id: str, target_id: str, source_handle: Optional[str], ordinal: int) -> str:
    """Edge identity: distinct even for repeated (source, target) pairs."""
    return f"{source_id}-{target_id}-{source_handle or DEFAULT_HANDLE}-{ordinal}"


def to_edges(stages: list[Stage], mode: str = "edit") -> list[FlowEdge]:
    """
    One edge per connection whose target stage exists.

    Connections to a removed stage are skipped silently; the stage list
    itself is left as is.
    """
    mode = _check_mode(mode)
    stage_ids = {s.id for s in stages}

    edges = []
    for stage in stages:
        for ordinal, conn in enumerate(stage.connections):
            if conn.target_id not in stage_ids:
                continue
            edges.append(FlowEdge(
                id=edge_id(stage.id, conn.target_id, conn.source_handle, ordinal),
                source=stage.id,
                target=conn.target_id,
                sourceHandle=conn.source_handle or DEFAULT_HANDLE,
                type=EDGE_TYPES[mode],
            ))
    return edges


# ============================================================================
# Pure mutations
# ============================================================================

def apply_position_change(stages: list[Stage], stage_id: str, new_position: Union[Position, dict]) -> list[Stage]:
    """Replace one stage's position. Unknown stage id: same stages, no error."""
    if isinstance(new_position, dict):
        new_position = Position.model_validate(new_position)
    return [
        s.model_copy(update={"position": new_position}) if s.id == stage_id else s
        for s in stages
    ]


def apply_new_connection(
    stages: list[Stage],
    source_stage_id: str,
    source_handle: Optional[str],
    target_stage_id: str,
) -> list[Stage]:
    """
    Append a connection to the source stage.

    No duplicate or cycle checks: authors may wire any graph. A missing handle
    is stored as the default handle.
    """
    conn = Connection(target_id=target_stage_id, source_handle=source_handle or DEFAULT_HANDLE)
    return [
        s.model_copy(update={"connections": [*s.connections, conn]}) if s.id == source_stage_id else s
        for s in stages
    ]


def remove_connections(stages: list[Stage], predicate: ConnectionPredicate) -> list[Stage]:
    """Drop every connection for which predicate(stage, connection) is true."""
    result = []
    for s in stages:
        kept = [c for c in s.connections if not predicate(s, c)]
        if len(kept) == len(s.connections):
            result.append(s)
        else:
            result.append(s.model_copy(update={"connections": kept}))
    return result


def _edge_pair(edge: Any) -> tuple[str, str]:
    if isinstance(edge, FlowEdge):
        return edge.source, edge.target
    if isinstance(edge, dict):
        return edge["source"], edge["target"]
    source, target = edge
    return source, target


def remove_edges_by_pair(stages: list[Stage], deleted_edges: Iterable[Any]) -> list[Stage]:
    """
    Remove the connections behind a bulk edge-delete event.

    Matching is by (source stage, target stage) only: when several connections
    share that pair they are all removed, whatever their handles.
    """
    pairs = {_edge_pair(e) for e in deleted_edges}
    if not pairs:
        return list(stages)
    return remove_connections(stages, lambda s, c: (s.id, c.target_id) in pairs)


def auto_arrange(
    stages: list[Stage],
    node_order: Optional[list[str]] = None,
    mode: str = "edit",
    settings: Optional[FlowSettings] = None,
) -> list[Stage]:
    """
    Re-place every stage on the grid.

    Args:
        stages: Current stage list (result keeps this order)
        node_order: Stage ids in on-screen node order; defaults to stage order.
                    Stages missing from it are placed after the listed ones.
        mode: Canvas whose grid spacing to use
        settings: Layout settings
    """
    mode = _check_mode(mode)
    settings = settings or FlowSettings()
    col_width, row_height = settings.grid_spacing(mode)

    stage_ids = {s.id for s in stages}
    order = [sid for sid in dict.fromkeys(node_order or []) if sid in stage_ids]
    order += [s.id for s in stages if s.id not in order]
    slot = {sid: i for i, sid in enumerate(order)}

    return [
        s.model_copy(update={"position": grid_position(slot[s.id], col_width, row_height, settings)})
        for s in stages
    ]


def prune_dangling_connections(stages: list[Stage]) -> list[Stage]:
    """Drop connections whose target stage is not in the list."""
    stage_ids = {s.id for s in stages}
    return remove_connections(stages, lambda s, c: c.target_id not in stage_ids)


def remove_stage(stages: list[Stage], stage_id: str) -> list[Stage]:
    """Delete a stage and every connection that pointed at it."""
    remaining = [s for s in stages if s.id != stage_id]
    return prune_dangling_connections(remaining)


# ============================================================================
# NetworkX view
# ============================================================================

def build_networkx_graph(stages: list[Stage]) -> nx.MultiDiGraph:
    """
    Build a NetworkX MultiDiGraph of the navigation graph.

    Node attributes: label, index (0-based sequence position), has_no_navigation.
    Edge attributes: source_handle. Edge keys are the canvas edge ids, so
    parallel connections between the same stages stay distinct. Connections
    to missing stages are skipped, as on the canvas.
    """
    G = nx.MultiDiGraph()
    for index, stage in enumerate(stages):
        G.add_node(
            stage.id,
            label=stage.name,
            index=index,
            has_no_navigation=stage_has_no_navigation(stage),
        )
    for edge in to_edges(stages):
        G.add_edge(edge.source, edge.target, key=edge.id, source_handle=edge.sourceHandle)
    return G


def find_entry_stage(G: nx.MultiDiGraph) -> Optional[str]:
    """The first stage in sequence order (where every session starts)."""
    if G.number_of_nodes() == 0:
        return None
    return min(G.nodes, key=lambda n: G.nodes[n].get("index", 0))


def find_terminal_stages(G: nx.MultiDiGraph) -> list[str]:
    """Stages with no outgoing connection, in sequence order."""
    terminal = [n for n in G.nodes if G.out_degree(n) == 0]
    return sorted(terminal, key=lambda n: G.nodes[n].get("index", 0))


def find_unreachable_stages(G: nx.MultiDiGraph) -> list[str]:
    """Stages no connection path leads to from the entry stage."""
    entry = find_entry_stage(G)
    if entry is None:
        return []
    reachable = nx.descendants(G, entry) | {entry}
    unreachable = [n for n in G.nodes if n not in reachable]
    return sorted(unreachable, key=lambda n: G.nodes[n].get("index", 0))


def get_flow_stats(G: nx.MultiDiGraph) -> dict[str, Any]:
    """Summary diagnostics for the flow editor."""
    return {
        "stage_count": G.number_of_nodes(),
        "connection_count": G.number_of_edges(),
        "entry_stage": find_entry_stage(G),
        "terminal_stages": find_terminal_stages(G),
        "unreachable_stages": find_unreachable_stages(G),
        "stages_without_navigation": [n for n in G.nodes if G.nodes[n].get("has_no_navigation")],
    }
