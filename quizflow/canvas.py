"""
Flow Canvas

View-model layer between the stage list and the canvas host.

`recompute(stages, analytics, selected_id)` is the single derivation of
nodes and edges; the host calls it (directly or through one of the canvas
classes) whenever the stages, the analytics snapshot or the selection
change.

- FlowCanvas: editable mode. Drag, connect, delete edges and auto-arrange
  produce a new stage list that is handed to `on_stages_change` for
  persistence.
- FlowAnalyticsCanvas: read-only overlay. Lead badges, conversion rates and
  edge flow intensity come from a FlowAnalyticsAggregator, optionally kept
  live by a LiveUpdateChannel.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from .flow_types import Stage, StageAnalytics, Position, FlowNode, FlowEdge
from .flow_settings import FlowSettings
from .flow_graph import (
    to_nodes,
    to_edges,
    apply_position_change,
    apply_new_connection,
    remove_edges_by_pair,
    auto_arrange,
    grid_position,
)
from .analytics.conversion import conversion_rate, classify_conversion, activity_level
from .analytics.aggregator import FlowAnalyticsAggregator
from .analytics.live_updates import LiveUpdateChannel
from .collaborators import PushNotifier


SelectCallback = Callable[[str], None]
StagesCallback = Callable[[list[Stage]], None]


@dataclass
class FlowView:
    """Nodes and edges in canvas-host shape."""
    nodes: list[FlowNode] = field(default_factory=list)
    edges: list[FlowEdge] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.model_dump() for n in self.nodes],
            "edges": [e.model_dump() for e in self.edges],
        }


def recompute(
    stages: list[Stage],
    analytics: Optional[Mapping[str, StageAnalytics]] = None,
    selected_id: Optional[str] = None,
    mode: Optional[str] = None,
    settings: Optional[FlowSettings] = None,
) -> FlowView:
    """
    Derive the canvas view from its three inputs.

    Args:
        stages: Stage list in sequence order
        analytics: Per-stage analytics; implies the analytics overlay when
                   `mode` is not given
        selected_id: Selected stage id
        mode: 'edit' or 'analytics'
        settings: Layout settings

    Returns:
        FlowView. In analytics mode node data also carries totalLeads,
        recentActivity, isPulsing, conversionRate, conversionStatus and
        previousStageLeads; edge data carries activityLevel (0-3) from the
        target stage's recent activity.
    """
    if mode is None:
        mode = "analytics" if analytics is not None else "edit"
    nodes = to_nodes(stages, selected_id, mode=mode, settings=settings)
    edges = to_edges(stages, mode=mode)
    if mode != "analytics":
        return FlowView(nodes=nodes, edges=edges)

    analytics = analytics or {}
    stage_ids = [s.id for s in stages]

    for index, node in enumerate(nodes):
        entry = analytics.get(node.id)
        previous = analytics.get(stage_ids[index - 1]) if index > 0 else None
        rate = conversion_rate(stage_ids, index, analytics)
        recent = entry.recent_activity if entry else 0
        node.data.update({
            "totalLeads": entry.total_leads if entry else 0,
            "recentActivity": recent,
            "isPulsing": recent > 0,
            "conversionRate": rate,
            "conversionStatus": classify_conversion(rate),
            "previousStageLeads": previous.total_leads if previous and previous.total_leads else None,
        })

    for edge in edges:
        target = analytics.get(edge.target)
        edge.data["activityLevel"] = activity_level(target.recent_activity if target else 0)

    return FlowView(nodes=nodes, edges=edges)


class FlowCanvas:
    """
    Editable flow canvas.

    Every structural change is applied to the local stage list first and then
    passed to `on_stages_change`; the owner of stage CRUD persists it.
    """

    def __init__(
        self,
        stages: list[Stage],
        selected_stage_id: Optional[str] = None,
        on_select_stage: Optional[SelectCallback] = None,
        on_stages_change: Optional[StagesCallback] = None,
        settings: Optional[FlowSettings] = None,
    ):
        self._stages = list(stages)
        self._selected_id = selected_stage_id
        self._on_select_stage = on_select_stage
        self._on_stages_change = on_stages_change
        self._settings = settings or FlowSettings()
        self._view = FlowView()
        self._rebuild()

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    @property
    def selected_stage_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def nodes(self) -> list[FlowNode]:
        return self._view.nodes

    @property
    def edges(self) -> list[FlowEdge]:
        return self._view.edges

    def view(self) -> FlowView:
        return self._view

    # ── Inputs from the host ──────────────────────────────────

    def set_stages(self, stages: list[Stage]) -> None:
        self._stages = list(stages)
        self._rebuild()

    def set_selected_stage(self, stage_id: Optional[str]) -> None:
        self._selected_id = stage_id
        self._rebuild()

    # ── Interaction ───────────────────────────────────────────

    def click_node(self, stage_id: str) -> None:
        self.set_selected_stage(stage_id)
        if self._on_select_stage:
            self._on_select_stage(stage_id)

    def drag_stop(self, stage_id: str, position: Position) -> list[Stage]:
        return self._commit(apply_position_change(self._stages, stage_id, position))

    def connect(self, source_stage_id: str, source_handle: Optional[str], target_stage_id: str) -> list[Stage]:
        return self._commit(apply_new_connection(self._stages, source_stage_id, source_handle, target_stage_id))

    def delete_edges(self, edges: Iterable[Any]) -> list[Stage]:
        """Bulk edge delete: removes every connection sharing a deleted edge's (source, target)."""
        return self._commit(remove_edges_by_pair(self._stages, edges))

    def auto_arrange(self) -> list[Stage]:
        """Grid positions in current on-screen node order, persisted."""
        node_order = [n.id for n in self._view.nodes]
        return self._commit(auto_arrange(self._stages, node_order, mode="edit", settings=self._settings))

    def _commit(self, stages: list[Stage]) -> list[Stage]:
        self._stages = stages
        self._rebuild()
        if self._on_stages_change:
            self._on_stages_change(list(stages))
        return stages

    def _rebuild(self) -> None:
        self._view = recompute(self._stages, None, self._selected_id, mode="edit", settings=self._settings)


class FlowAnalyticsCanvas:
    """
    Read-only analytics overlay.

    Nodes cannot be dragged or connected. Auto-arrange only moves nodes on
    screen (it is not persisted) and lasts until the stage list changes.
    """

    def __init__(
        self,
        aggregator: FlowAnalyticsAggregator,
        stages: list[Stage],
        selected_stage_id: Optional[str] = None,
        on_select_stage: Optional[SelectCallback] = None,
        notifier: Optional[PushNotifier] = None,
        settings: Optional[FlowSettings] = None,
    ):
        self._aggregator = aggregator
        self._stages = list(stages)
        self._selected_id = selected_stage_id
        self._on_select_stage = on_select_stage
        self._settings = settings or FlowSettings()
        self._arranged: dict[str, Position] = {}
        self._channel = LiveUpdateChannel(notifier, aggregator) if notifier else None
        self._remove_listener = aggregator.add_listener(lambda _snapshot: self._rebuild())
        self._view = FlowView()
        self._rebuild()

    # ── Lifecycle ─────────────────────────────────────────────

    async def mount(self) -> None:
        """Initial fetch, then live updates when a notifier was given."""
        await self._aggregator.refresh()
        if self._channel:
            self._channel.start()

    def close(self) -> None:
        """Tear down subscriptions; results of refreshes still in flight are discarded."""
        if self._channel:
            self._channel.stop()
        self._remove_listener()
        self._aggregator.detach()

    async def refetch(self) -> bool:
        return await self._aggregator.refetch()

    # ── State ─────────────────────────────────────────────────

    @property
    def nodes(self) -> list[FlowNode]:
        return self._view.nodes

    @property
    def edges(self) -> list[FlowEdge]:
        return self._view.edges

    @property
    def total_sessions(self) -> int:
        return self._aggregator.total_sessions

    @property
    def is_loading(self) -> bool:
        return self._aggregator.is_loading

    @property
    def last_error(self) -> Optional[str]:
        return self._aggregator.last_error

    @property
    def is_live(self) -> bool:
        return bool(self._channel and self._channel.is_live)

    @property
    def channel(self) -> Optional[LiveUpdateChannel]:
        return self._channel

    def view(self) -> FlowView:
        return self._view

    # ── Inputs / interaction ──────────────────────────────────

    def set_stages(self, stages: list[Stage]) -> None:
        self._stages = list(stages)
        self._arranged = {}
        self._rebuild()

    def set_selected_stage(self, stage_id: Optional[str]) -> None:
        self._selected_id = stage_id
        self._rebuild()

    def click_node(self, stage_id: str) -> None:
        self.set_selected_stage(stage_id)
        if self._on_select_stage:
            self._on_select_stage(stage_id)

    def auto_arrange(self) -> None:
        col_width, row_height = self._settings.grid_spacing("analytics")
        self._arranged = {
            node.id: grid_position(index, col_width, row_height, self._settings)
            for index, node in enumerate(self._view.nodes)
        }
        self._rebuild()

    def _rebuild(self) -> None:
        view = recompute(
            self._stages,
            self._aggregator.stage_analytics,
            self._selected_id,
            mode="analytics",
            settings=self._settings,
        )
        for node in view.nodes:
            if node.id in self._arranged:
                node.position = self._arranged[node.id]
        self._view = view
