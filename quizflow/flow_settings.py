"""
Flow settings: layout and activity tuning for the flow canvases.

The frontend may send these explicitly in API requests; Python defines the
defaults here (matching the builder's canvases) for tests and for the dev
server. A deployment can override them with a YAML file:

    flow:
      grid_columns: 4
      analytics_col_width: 250
      activity_window_minutes: 10
"""

import logging
import math
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class FlowSettings:
    """
    Tuning constants for node layout and the analytics overlay.

    Field names match the wire format accepted by settings_from_dict().
    """

    # ── Grid layout ───────────────────────────────────────────

    grid_columns: int = 4
    """Nodes per row when auto-placing."""

    grid_origin_x: float = 100
    grid_origin_y: float = 100

    edit_col_width: float = 220
    """Column spacing on the editable canvas."""

    edit_row_height: float = 180
    """Row spacing on the editable canvas."""

    analytics_col_width: float = 250
    """Column spacing on the analytics overlay (nodes carry badges)."""

    analytics_row_height: float = 220

    max_visible_components: int = 8
    """Components listed on an editable node before collapsing into '+N'."""

    # ── Analytics ─────────────────────────────────────────────

    activity_window_minutes: float = 5
    """Trailing window for a stage's recent-activity count."""

    def grid_spacing(self, mode: str) -> tuple[float, float]:
        """(column width, row height) for the 'edit' or 'analytics' canvas."""
        if mode == "analytics":
            return self.analytics_col_width, self.analytics_row_height
        return self.edit_col_width, self.edit_row_height


_INT_FIELDS = {"grid_columns", "max_visible_components"}


def settings_from_dict(d: Optional[Dict[str, Any]]) -> FlowSettings:
    """
    Construct FlowSettings from a dict (e.g. from an API request body).

    Missing fields use Python defaults. Extra fields are ignored, as are
    values that are not finite numbers. Integer fields must be >= 1.
    """
    if not d:
        return FlowSettings()

    kwargs = {}
    for field_name in FlowSettings.__dataclass_fields__:
        if field_name not in d:
            continue
        val = d[field_name]
        if isinstance(val, bool) or not isinstance(val, (int, float)) or not math.isfinite(val):
            continue
        if field_name in _INT_FIELDS:
            if int(val) >= 1:
                kwargs[field_name] = int(val)
        else:
            kwargs[field_name] = float(val)
    return FlowSettings(**kwargs)


def load_flow_settings(path: Optional[str] = None) -> FlowSettings:
    """
    Load FlowSettings from a YAML file.

    The path defaults to FLOW_SETTINGS_PATH. With no path configured the
    defaults are returned; a missing or unreadable file is logged and also
    yields the defaults.
    """
    path = path or os.environ.get("FLOW_SETTINGS_PATH")
    if not path:
        return FlowSettings()

    settings_path = Path(path)
    if not settings_path.exists():
        logger.warning(f"[flow_settings] {settings_path} not found, using defaults")
        return FlowSettings()

    try:
        with open(settings_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"[flow_settings] Failed to read {settings_path}: {e}")
        return FlowSettings()

    section = data.get("flow") if isinstance(data, dict) else None
    return settings_from_dict(section if isinstance(section, dict) else None)


def settings_to_dict(settings: FlowSettings) -> Dict[str, Any]:
    return asdict(settings)
