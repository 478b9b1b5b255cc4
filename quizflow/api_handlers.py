"""
Shared API handlers for the flow endpoints.

Used by dev-server.py (FastAPI). Handlers take the decoded JSON body and
return a JSON-serialisable dict; malformed requests raise ValueError (the
server maps it to 400).
"""
from typing import Dict, Any, Optional, List

from .flow_types import Stage, StageAnalytics
from .flow_settings import settings_from_dict


def _parse_stages(data: Dict[str, Any]) -> List[Stage]:
    raw = data.get('stages')
    if raw is None:
        raise ValueError("Missing 'stages' field")
    if not isinstance(raw, list):
        raise ValueError("'stages' must be a list")
    # pydantic's ValidationError is a ValueError
    return [Stage.model_validate(s) for s in raw]


def _parse_analytics(raw: Any) -> Optional[Dict[str, StageAnalytics]]:
    """Accepts {stageId: {totalLeads, recentActivity}} or a list of StageAnalytics dicts."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        items = [{'stageId': sid, **(v if isinstance(v, dict) else {})} for sid, v in raw.items()]
    elif isinstance(raw, list):
        items = raw
    else:
        raise ValueError("'analytics' must be an object or a list")
    parsed = [StageAnalytics.model_validate(item) for item in items]
    return {a.stage_id: a for a in parsed}


def _dump_stages(stages: List[Stage]) -> List[Dict[str, Any]]:
    return [s.model_dump(by_alias=True, exclude_none=True) for s in stages]


def handle_flow_recompute(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Handle flow/recompute endpoint.

    Args:
        data: Request body containing:
            - stages: Stage list in sequence order (required)
            - selectedStageId: Optional selected stage
            - mode: Optional 'edit' | 'analytics' (default: analytics when
              'analytics' is given, else edit)
            - analytics: Optional per-stage analytics
            - settings: Optional FlowSettings overrides

    Returns:
        {nodes, edges, stats, success}
    """
    from .canvas import recompute
    from .flow_graph import build_networkx_graph, get_flow_stats

    stages = _parse_stages(data)
    analytics = _parse_analytics(data.get('analytics'))
    settings = settings_from_dict(data.get('settings'))

    view = recompute(
        stages,
        analytics,
        data.get('selectedStageId'),
        mode=data.get('mode'),
        settings=settings,
    )
    return {
        **view.to_dict(),
        "stats": get_flow_stats(build_networkx_graph(stages)),
        "success": True,
    }


def handle_flow_eligibility(data: Dict[str, Any]) -> Dict[str, Any]:
    """Handle flow/eligibility endpoint: connection handles and warnings per stage."""
    from .navigation import describe_stage

    stages = _parse_stages(data)
    return {
        "stages": [describe_stage(s) for s in stages],
        "success": True,
    }


def handle_flow_mutate(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Handle flow/mutate endpoint.

    Args:
        data: Request body containing:
            - stages: Stage list (required)
            - action: one of
                'position'     (stageId, position {x, y})
                'connect'      (sourceStageId, sourceHandle?, targetStageId)
                'delete-edges' (edges [{source, target}, ...])
                'auto-arrange' (nodeOrder?, mode?, settings?)
                'remove-stage' (stageId)

    Returns:
        {stages, success}: the updated list to persist
    """
    from . import flow_graph

    stages = _parse_stages(data)
    action = data.get('action')

    if action == 'position':
        stage_id = data.get('stageId')
        position = data.get('position')
        if not stage_id or not isinstance(position, dict):
            raise ValueError("'position' requires 'stageId' and 'position'")
        updated = flow_graph.apply_position_change(stages, stage_id, position)
    elif action == 'connect':
        source = data.get('sourceStageId')
        target = data.get('targetStageId')
        if not source or not target:
            raise ValueError("'connect' requires 'sourceStageId' and 'targetStageId'")
        updated = flow_graph.apply_new_connection(stages, source, data.get('sourceHandle'), target)
    elif action == 'delete-edges':
        edges = data.get('edges')
        if not isinstance(edges, list) or not all(isinstance(e, dict) and 'source' in e and 'target' in e for e in edges):
            raise ValueError("'delete-edges' requires 'edges' as a list of {source, target}")
        updated = flow_graph.remove_edges_by_pair(stages, edges)
    elif action == 'auto-arrange':
        updated = flow_graph.auto_arrange(
            stages,
            data.get('nodeOrder'),
            mode=data.get('mode') or 'edit',
            settings=settings_from_dict(data.get('settings')),
        )
    elif action == 'remove-stage':
        stage_id = data.get('stageId')
        if not stage_id:
            raise ValueError("'remove-stage' requires 'stageId'")
        updated = flow_graph.remove_stage(stages, stage_id)
    else:
        raise ValueError(f"Unknown action: {action!r}")

    return {
        "stages": _dump_stages(updated),
        "success": True,
    }


def handle_flow_conversion(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Handle flow/conversion endpoint.

    Args:
        data: Request body containing:
            - stageIds: Stage ids in sequence order (required)
            - analytics: Per-stage analytics (required)

    Returns:
        {conversion: [{stageId, totalLeads, conversionRate, status}], success}
    """
    from .analytics.conversion import compute_conversion_rates, classify_conversion

    stage_ids = data.get('stageIds')
    if not isinstance(stage_ids, list):
        raise ValueError("Missing 'stageIds' field")
    analytics = _parse_analytics(data.get('analytics'))
    if analytics is None:
        raise ValueError("Missing 'analytics' field")

    rates = compute_conversion_rates(stage_ids, analytics)
    return {
        "conversion": [
            {
                "stageId": sid,
                "totalLeads": analytics[sid].total_leads if sid in analytics else 0,
                "conversionRate": rates[sid],
                "status": classify_conversion(rates[sid]),
            }
            for sid in stage_ids
        ],
        "success": True,
    }


async def handle_flow_analytics(data: Dict[str, Any], query=None) -> Dict[str, Any]:
    """
    Handle flow/analytics endpoint: one full aggregation for a quiz.

    Args:
        data: Request body containing:
            - quizId: Quiz to aggregate (required)
            - settings: Optional FlowSettings overrides
        query: AnalyticsQuery to read from (default: Postgres via DB_CONNECTION)

    Returns:
        {stageAnalytics, totalSessions, success} or, when the backend could
        not be read, {success: False, error}
    """
    from .analytics.aggregator import FlowAnalyticsAggregator

    quiz_id = data.get('quizId')
    if not quiz_id:
        raise ValueError("Missing 'quizId' field")

    if query is None:
        from .pg_store import PostgresAnalyticsQuery
        query = PostgresAnalyticsQuery()

    aggregator = FlowAnalyticsAggregator(query, quiz_id=quiz_id, settings=settings_from_dict(data.get('settings')))
    if not await aggregator.refresh():
        return {
            "success": False,
            "error": aggregator.last_error or "Analytics unavailable",
        }

    snapshot = aggregator.snapshot
    return {
        "stageAnalytics": {
            sid: a.model_dump(by_alias=True) for sid, a in snapshot.stage_analytics.items()
        },
        "totalSessions": snapshot.total_sessions,
        "success": True,
    }
