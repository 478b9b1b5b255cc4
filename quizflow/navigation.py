"""
Navigation Eligibility

Decides which components of a stage can originate a navigation connection
and which handle ids they expose on the canvas:

- button: connectable when its action is next / submit / specific
- loading: always connectable (it advances when it finishes)
- single/multiple choice with options: each option is its own connection point
- everything else (including a choice component with no options): inert

Eligibility is derived on every read; nothing here is persisted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .flow_types import (
    Stage,
    Component,
    ButtonConfig,
    LoadingConfig,
    ChoiceConfig,
    GenericConfig,
    NAVIGATING_BUTTON_ACTIONS,
)


DEFAULT_HANDLE = "default"


def component_handle_id(component_key: str) -> str:
    return f"comp-{component_key}"


def option_handle_id(component_id: str, option_id: str) -> str:
    return f"opt-{component_id}-{option_id}"


@dataclass
class OptionHandle:
    """Connection point of one option of a choice component."""
    option_id: str
    text: str
    handle_id: str
    destination: Optional[str] = None
    destination_stage_id: Optional[str] = None


@dataclass
class ComponentEligibility:
    """Navigation capabilities of one component, in stage order."""
    component: Component
    is_connectable: bool
    handle_id: Optional[str] = None
    options: List[OptionHandle] = field(default_factory=list)
    is_option_type: bool = False

    @property
    def is_option_bearing(self) -> bool:
        return len(self.options) > 0

    @property
    def can_navigate(self) -> bool:
        return self.is_connectable or self.is_option_bearing


def resolve_component(component: Component, index: int = 0) -> ComponentEligibility:
    """
    Classify a component as connectable, option-bearing or inert.

    Args:
        component: Component to classify
        index: Position within its stage; stands in for a missing component id
               when building the handle id

    Returns:
        ComponentEligibility (inert components have no handle and no options)
    """
    config = component.config
    component_key = component.id or str(index)

    if isinstance(config, ChoiceConfig):
        if not config.options:
            # No options to wire: rendered like any other inert component, but
            # still counts as a navigation component for the stage warning
            return ComponentEligibility(component=component, is_connectable=False, is_option_type=True)
        options = [
            OptionHandle(
                option_id=opt.id,
                text=opt.text,
                handle_id=option_handle_id(component_key, opt.id),
                destination=opt.destination,
                destination_stage_id=opt.destination_stage_id,
            )
            for opt in config.options
        ]
        return ComponentEligibility(component=component, is_connectable=False, options=options, is_option_type=True)

    if isinstance(config, ButtonConfig):
        if config.button_action in NAVIGATING_BUTTON_ACTIONS:
            return ComponentEligibility(
                component=component,
                is_connectable=True,
                handle_id=component_handle_id(component_key),
            )
        return ComponentEligibility(component=component, is_connectable=False)

    if isinstance(config, LoadingConfig):
        return ComponentEligibility(
            component=component,
            is_connectable=True,
            handle_id=component_handle_id(component_key),
        )

    if isinstance(config, GenericConfig):
        return ComponentEligibility(component=component, is_connectable=False)

    raise TypeError(f"Unknown component config variant: {type(config).__name__}")


def resolve_stage(stage: Stage) -> List[ComponentEligibility]:
    """Eligibility of every component of a stage, in component order."""
    return [resolve_component(comp, idx) for idx, comp in enumerate(stage.components)]


def stage_has_no_navigation(stage: Stage) -> bool:
    """
    True when a stage has components but none of them can navigate.
    Choice components count even while they have no options yet.

    Advisory only (drives the 'no navigation components' warning); an empty
    stage is not flagged.
    """
    if not stage.components:
        return False
    return not any(e.can_navigate or e.is_option_type for e in resolve_stage(stage))


def stage_source_handles(stage: Stage) -> List[str]:
    """All source handle ids a stage exposes, default handle first."""
    handles = [DEFAULT_HANDLE]
    for e in resolve_stage(stage):
        if e.handle_id:
            handles.append(e.handle_id)
        handles.extend(o.handle_id for o in e.options)
    return handles


def eligibility_to_dict(e: ComponentEligibility) -> Dict[str, Any]:
    """Wire form of one component's eligibility (camelCase, canvas-facing)."""
    return {
        "componentId": e.component.id,
        "type": e.component.type,
        "name": e.component.name,
        "icon": e.component.icon,
        "isConnectable": e.is_connectable,
        "isOptionBearing": e.is_option_bearing,
        "isOptionType": e.is_option_type,
        "handleId": e.handle_id,
        "options": [
            {
                "optionId": o.option_id,
                "text": o.text,
                "handleId": o.handle_id,
                "destination": o.destination,
                "destinationStageId": o.destination_stage_id,
            }
            for o in e.options
        ],
    }


def describe_stage(stage: Stage) -> Dict[str, Any]:
    """Eligibility summary of a stage for the API and the node payloads."""
    return {
        "stageId": stage.id,
        "hasNoNavigation": stage_has_no_navigation(stage),
        "components": [eligibility_to_dict(e) for e in resolve_stage(stage)],
    }
