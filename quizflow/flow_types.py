"""
Quiz flow data types using Pydantic

Stages, their components and the navigation connections between them, plus the
read-only Session/Response records consumed by the analytics overlay and the
node/edge shapes handed to the canvas host.

Field aliases match the camelCase keys stored by the quiz builder, so a stage
list can be validated straight from the persisted JSON and dumped back with
`model_dump(by_alias=True, exclude_none=True)` without losing unknown keys.
"""

from typing import List, Dict, Any, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


# ============================================================================
# Component types
# ============================================================================

BUTTON_TYPES = frozenset({"button"})
LOADING_TYPES = frozenset({"loading"})
CHOICE_TYPES = frozenset({"options", "single", "multiple", "single_choice", "multiple_choice"})

# Button actions that move the player to another stage
NAVIGATING_BUTTON_ACTIONS = frozenset({"next", "submit", "specific"})


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps from the backend are UTC
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


# ============================================================================
# Component configuration variants
# ============================================================================

class Option(BaseModel):
    """One selectable option of a choice component."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1)
    text: str = Field("", description="Display text (may contain inline HTML)")
    value: Optional[Union[str, int, float]] = None
    destination: Optional[str] = Field(None, description="'next', 'submit' or 'specific'")
    destination_stage_id: Optional[str] = Field(None, alias="destinationStageId")


class ButtonConfig(BaseModel):
    """Configuration of a button component."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    button_action: Optional[str] = Field(None, alias="buttonAction", description="'next', 'submit', 'specific', 'link', ...")
    button_link: Optional[str] = Field(None, alias="buttonLink")


class LoadingConfig(BaseModel):
    """Configuration of a loading/transition component. Always advances when done."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    duration: Optional[float] = Field(None, ge=0)


class ChoiceConfig(BaseModel):
    """Configuration of a single/multiple choice selector."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    options: List[Option] = Field(default_factory=list)
    auto_advance: Optional[bool] = Field(None, alias="autoAdvance")
    allow_multiple: Optional[bool] = Field(None, alias="allowMultiple")


class GenericConfig(BaseModel):
    """Any other component type (text, input, media, ...). Opaque to navigation."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


ComponentConfig = Union[ButtonConfig, LoadingConfig, ChoiceConfig, GenericConfig]


def _coerce_options(raw: Any) -> List[Dict[str, Any]]:
    """Drop anything that is not an option dict; assign positional ids where missing."""
    if not isinstance(raw, list):
        return []
    options = []
    for n, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        item = dict(item)
        if not item.get("id"):
            item["id"] = f"option-{n}"
        else:
            item["id"] = str(item["id"])
        item["text"] = "" if item.get("text") is None else str(item["text"])
        for key in ("destination", "destinationStageId"):
            if key in item and not isinstance(item[key], str):
                item.pop(key)
        options.append(item)
    return options


def config_for_type(component_type: str, raw: Any) -> ComponentConfig:
    """
    Build the configuration variant for a component type.

    Never raises: a missing or malformed blob yields the variant's defaults
    (e.g. a choice component without an `options` array has zero options).
    """
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True, exclude_none=True)
    if not isinstance(raw, dict):
        raw = {}

    if component_type in BUTTON_TYPES:
        action = raw.get("buttonAction", raw.get("button_action"))
        data = {k: v for k, v in raw.items() if k not in ("buttonAction", "button_action")}
        data["buttonAction"] = action if isinstance(action, str) else None
        link = data.get("buttonLink")
        if link is not None and not isinstance(link, str):
            data["buttonLink"] = None
        return ButtonConfig.model_validate(data)

    if component_type in LOADING_TYPES:
        data = dict(raw)
        duration = data.get("duration")
        if not isinstance(duration, (int, float)) or duration < 0:
            data.pop("duration", None)
        return LoadingConfig.model_validate(data)

    if component_type in CHOICE_TYPES:
        data = dict(raw)
        data["options"] = _coerce_options(raw.get("options"))
        for key in ("autoAdvance", "allowMultiple"):
            if key in data and not isinstance(data[key], bool):
                data.pop(key)
        return ChoiceConfig.model_validate(data)

    return GenericConfig.model_validate(raw)


# ============================================================================
# Stage structure
# ============================================================================

class Position(BaseModel):
    """Canvas position of a stage node."""
    x: float
    y: float


class Connection(BaseModel):
    """
    Directed navigation edge owned by its source stage.

    `source_handle` scopes the edge to one component (`comp-<id>`) or option
    (`opt-<componentId>-<optionId>`) of the source stage; None means the
    stage's unscoped default outgoing edge.
    """
    model_config = ConfigDict(populate_by_name=True)

    target_id: str = Field(..., alias="targetId", min_length=1)
    source_handle: Optional[str] = Field(None, alias="sourceHandle")


class Component(BaseModel):
    """A configurable element placed within a stage."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field("", description="Component id (may be empty for legacy components)")
    type: str = Field(..., description="Component type tag (button, loading, options, text, ...)")
    name: str = Field("", description="Display name")
    icon: str = Field("", description="Icon name")
    config: ComponentConfig = Field(default_factory=GenericConfig)

    @model_validator(mode="before")
    @classmethod
    def build_config_variant(cls, data):
        """Select the configuration variant from the component type."""
        if isinstance(data, dict):
            data = dict(data)
            component_type = data.get("type") if isinstance(data.get("type"), str) else ""
            data["type"] = component_type
            data["config"] = config_for_type(component_type, data.get("config"))
            for key in ("id", "name", "icon"):
                if data.get(key) is None:
                    data[key] = ""
                elif not isinstance(data[key], str):
                    data[key] = str(data[key])
        return data


class Stage(BaseModel):
    """One step/screen of a quiz; a node in the navigation graph."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field("", description="Display name")
    order: Optional[int] = Field(None, ge=0, description="Ordinal position in the authored sequence")
    components: List[Component] = Field(default_factory=list)
    position: Optional[Position] = None
    connections: List[Connection] = Field(default_factory=list)

    @field_validator("components", "connections", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        """Stages saved before the flow editor existed have null lists."""
        return [] if v is None else v


# ============================================================================
# External records (read-only)
# ============================================================================

class Session(BaseModel):
    """One end-user attempt at a quiz."""
    id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_completed: Optional[bool] = None
    last_stage_index: Optional[int] = None
    device_type: Optional[str] = None
    referrer: Optional[str] = None

    @field_validator("started_at", "completed_at", mode="after")
    @classmethod
    def ensure_utc(cls, v):
        return _as_utc(v)


class Response(BaseModel):
    """A recorded answer/arrival of one session at one stage."""
    stage_id: str
    session_id: str
    created_at: datetime

    @field_validator("created_at", mode="after")
    @classmethod
    def ensure_utc(cls, v):
        return _as_utc(v)


# ============================================================================
# Derived analytics
# ============================================================================

class StageAnalytics(BaseModel):
    """Per-stage lead count and trailing-window activity."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stage_id: str = Field(..., alias="stageId")
    total_leads: int = Field(0, ge=0, alias="totalLeads", description="Distinct sessions that reached the stage")
    recent_activity: int = Field(0, ge=0, alias="recentActivity", description="Responses inside the activity window")


class FlowAnalyticsSnapshot(BaseModel):
    """Result of one full aggregator refresh."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stage_analytics: Dict[str, StageAnalytics] = Field(default_factory=dict, alias="stageAnalytics")
    total_sessions: int = Field(0, ge=0, alias="totalSessions")
    computed_at: Optional[datetime] = Field(None, alias="computedAt")


# ============================================================================
# Canvas host shapes
# ============================================================================

class FlowNode(BaseModel):
    """Node as consumed by the canvas host. Field names are a boundary contract."""
    id: str
    type: str
    position: Position
    data: Dict[str, Any] = Field(default_factory=dict)
    selected: bool = False


class FlowEdge(BaseModel):
    """Edge as consumed by the canvas host. Field names are a boundary contract."""
    id: str
    source: str
    target: str
    sourceHandle: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
