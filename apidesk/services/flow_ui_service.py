"""
Flow UI Service for apidesk

Renders the flow list and the active flow into their container elements
and turns clicks inside them into bus events. Each render call replaces
the whole container subtree, so the same input always produces the same
tree.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..core.event_bus import EventBus, Subscription
from ..models.flow import Flow, StepType
from ..ui.dom_service import ClickEvent, ConfirmFn, DomService, console_confirm
from .logging_service import LoggingService

class StepStatus(str, Enum):
    """Execution state of a step in the active flow"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"

STATUS_COLORS = {
    StepStatus.RUNNING: 'info',
    StepStatus.SUCCESS: 'success',
    StepStatus.ERROR: 'error',
    StepStatus.SKIPPED: 'warning',
    StepStatus.PENDING: 'ghost',
}

EMPTY_STATE_TEXT = "Select a flow from the list or create a new one."
NO_DESCRIPTION_TEXT = "No description provided"
NO_STEPS_TEXT = "No steps defined. Add a step to get started."

FlowLike = Union[Flow, Dict[str, Any]]

def get_status_color(status: Union[StepStatus, str]) -> str:
    try:
        return STATUS_COLORS[StepStatus(status)]
    except ValueError:
        return 'ghost'

def describe_step(step) -> str:
    """One-line summary of a step's type-specific settings"""
    if step.type == StepType.REQUEST.value:
        return f"{step.method or '[No Method]'} {step.url or step.endpoint_id or '[No URL/Endpoint]'}"
    if step.type == StepType.DELAY.value:
        return f"Delay: {step.delay}ms"
    if step.type == StepType.CONDITION.value:
        return f"Condition: {step.condition or '[No Condition]'}"
    if step.type == StepType.LOG.value:
        return f"Log: {step.message or '[No Message]'}"
    return ''

class FlowUIService:
    """
    Rendering and click translation for flows.

    The service never calls other services. It renders what it is given,
    re-renders on ``flows:changed`` and ``flow:state-changed``, and
    publishes user intent as ``flow:*``, ``step:*`` and ``ui:*`` events.
    Deleting a flow or step asks the injected confirm callable first.
    """

    def __init__(
        self,
        dom: DomService,
        event_bus: EventBus,
        logger: LoggingService,
        confirm: ConfirmFn = console_confirm,
        flow_details_container_id: str = "flow-details",
        flow_menu_container_id: str = "flow-menu"
    ):
        self.dom = dom
        self.event_bus = event_bus
        self.logger = logger.child('FlowUIService')
        self.confirm = confirm
        self.flow_details_container_id = flow_details_container_id
        self.flow_menu_container_id = flow_menu_container_id

        self.flow_details_container = None
        self.flow_menu_container = None
        self._root = None
        self._subscriptions: List[Subscription] = []

        self._initialize()

    def _initialize(self) -> None:
        self.logger.debug("Initializing FlowUIService")

        self.flow_details_container = self.dom.get_element_by_id(self.flow_details_container_id)
        self.flow_menu_container = self.dom.get_element_by_id(self.flow_menu_container_id)

        if self.flow_details_container is None:
            self.logger.warn(f"Flow details container not found: {self.flow_details_container_id}")
        if self.flow_menu_container is None:
            self.logger.warn(f"Flow menu container not found: {self.flow_menu_container_id}")

        self._root = self.dom.body
        self.dom.add_event_listener(self._root, 'click', self._handle_click)

        self._subscriptions = [
            self.event_bus.subscribe('flows:changed', self._on_flows_changed),
            self.event_bus.subscribe('flow:state-changed', self._on_flow_state_changed)
        ]

    def destroy(self) -> None:
        """Detach the click listener and the bus subscriptions"""
        if self._root is not None:
            self.dom.remove_event_listener(self._root, 'click', self._handle_click)
            self._root = None

        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

    def render_flows(self, flows: Union[Mapping[str, FlowLike], Iterable[FlowLike]], active_flow_id: Optional[str] = None) -> None:
        """
        Render the flow list into the menu container.

        Args:
            flows: Flows keyed by id, or a sequence of flows
            active_flow_id: Id of the flow to highlight
        """
        container = self.flow_menu_container
        if container is None:
            return

        self.logger.debug("Rendering flow list")
        self.dom.remove_all_children(container)

        items = flows.values() if isinstance(flows, Mapping) else flows
        for raw_flow in items:
            try:
                flow = self._coerce_flow(raw_flow)
            except ValidationError as e:
                self.logger.warn(f"Skipping invalid flow: {e.error_count()} error(s)")
                continue

            classes = 'flow-item active' if flow.id == active_flow_id else 'flow-item'
            flow_item = self.dom.create_element('div', {'class': classes, 'data-flow-id': flow.id})
            self.dom.append_child(flow_item, self.dom.create_element('div', {'class': 'flow-name'}, flow.name))
            self.dom.append_child(
                flow_item,
                self.dom.create_element('div', {'class': 'flow-description'}, flow.description or '')
            )
            self.dom.append_child(container, flow_item)

        new_flow_button = self.dom.create_element('button', {'class': 'btn new-flow-btn'}, '+ New Flow')
        self.dom.append_child(container, new_flow_button)

    def render_active_flow(
        self,
        flow: Optional[FlowLike],
        step_statuses: Optional[Mapping[str, Union[StepStatus, str]]] = None,
        is_running: bool = False
    ) -> None:
        """
        Render one flow with its steps into the details container.

        Args:
            flow: Flow to show; None renders the empty state
            step_statuses: Status per step id; steps without one get no badge
            is_running: Disables the run button while the flow executes
        """
        container = self.flow_details_container
        if container is None:
            return

        self.dom.remove_all_children(container)

        if flow is None:
            self.dom.append_child(container, self.dom.create_element('div', {'class': 'empty-state'}, EMPTY_STATE_TEXT))
            return

        flow = self._coerce_flow(flow)
        step_statuses = step_statuses or {}
        self.logger.debug(f"Rendering active flow: {flow.id}")

        dom = self.dom
        header = dom.create_element('div', {'class': 'flow-header'})
        dom.append_child(header, dom.create_element('h2', {'class': 'flow-title'}, flow.name))

        actions = dom.create_element('div', {'class': 'flow-actions'})
        dom.append_child(actions, dom.create_element('button', {
            'class': 'btn run-flow-btn loading' if is_running else 'btn run-flow-btn',
            'disabled': 'disabled' if is_running else None,
            'data-flow-id': flow.id
        }, 'Running...' if is_running else 'Run Flow'))
        dom.append_child(actions, dom.create_element(
            'button', {'class': 'btn edit-flow-btn', 'data-flow-id': flow.id}, 'Edit Flow'
        ))
        dom.append_child(actions, dom.create_element(
            'button', {'class': 'btn delete-flow-btn', 'data-flow-id': flow.id}, 'Delete Flow'
        ))
        dom.append_child(header, actions)

        description = dom.create_element('p', {'class': 'flow-description'}, flow.description or NO_DESCRIPTION_TEXT)

        steps_container = dom.create_element('div', {'class': 'flow-steps', 'data-flow-id': flow.id})
        dom.append_child(steps_container, dom.create_element('h3', {'class': 'steps-title'}, 'Steps'))

        steps_list = dom.create_element('div', {'class': 'steps-list'})
        if not flow.steps:
            dom.append_child(steps_list, dom.create_element('div', {'class': 'empty-steps'}, NO_STEPS_TEXT))
        for index, step in enumerate(flow.steps):
            dom.append_child(steps_list, self._create_step_element(step, index, step_statuses.get(step.id)))
        dom.append_child(steps_container, steps_list)

        dom.append_child(steps_container, dom.create_element(
            'button', {'class': 'btn add-step-btn', 'data-flow-id': flow.id}, '+ Add Step'
        ))

        dom.append_child(container, header)
        dom.append_child(container, description)
        dom.append_child(container, steps_container)

    def show_step_editor(self, step: Any = None) -> None:
        self.event_bus.emit('ui:show-step-editor', {'step': step})

    def show_flow_editor(self, flow: Any = None) -> None:
        self.event_bus.emit('ui:show-flow-editor', {'flow': flow})

    def _create_step_element(self, step, index: int, status: Optional[Union[StepStatus, str]]):
        dom = self.dom
        step_item = dom.create_element('div', {
            'class': 'card step-item',
            'data-step-id': step.id,
            'data-step-type': step.type
        })

        step_header = dom.create_element('div', {'class': 'step-header'})
        dom.append_child(step_header, dom.create_element('div', {'class': 'step-title'}, f"{index + 1}. {step.name}"))

        step_actions = dom.create_element('div', {'class': 'step-actions'})
        dom.append_child(step_actions, dom.create_element('button', {'class': 'edit-step-btn'}, 'Edit'))
        dom.append_child(step_actions, dom.create_element('button', {'class': 'delete-step-btn'}, 'Delete'))
        dom.append_child(step_header, step_actions)

        if status:
            status_text = status.value if isinstance(status, StepStatus) else str(status)
            dom.append_child(step_header, dom.create_element(
                'span', {'class': f"badge badge-{get_status_color(status)}"}, status_text
            ))

        step_details = dom.create_element('div', {'class': 'step-details'})
        if step.description:
            dom.append_child(step_details, dom.create_element('div', {'class': 'step-description'}, step.description))
        dom.append_child(step_details, dom.create_element('div', {'class': 'step-summary'}, describe_step(step)))

        dom.append_child(step_item, step_header)
        dom.append_child(step_item, step_details)
        return step_item

    def _handle_click(self, event: ClickEvent) -> None:
        target = event.target
        dom = self.dom

        flow_item = dom.closest(target, '.flow-item')
        if flow_item is not None and flow_item.getAttribute('data-flow-id'):
            self._emit('flow:select', {'flow_id': flow_item.getAttribute('data-flow-id')})

        if dom.closest(target, '.new-flow-btn') is not None:
            self._emit('flow:create', {})

        if dom.closest(target, '.edit-flow-btn') is not None:
            flow_id = self._closest_attribute(target, 'data-flow-id')
            if flow_id:
                self._emit('flow:edit', {'flow_id': flow_id})

        if dom.closest(target, '.delete-flow-btn') is not None:
            flow_id = self._closest_attribute(target, 'data-flow-id')
            if flow_id and self.confirm('Are you sure you want to delete this flow?'):
                self._emit('flow:delete', {'flow_id': flow_id})

        run_button = dom.closest(target, '.run-flow-btn')
        if run_button is not None and not run_button.hasAttribute('disabled'):
            flow_id = self._closest_attribute(target, 'data-flow-id')
            if flow_id:
                self._emit('flow:run', {'flow_id': flow_id})

        if dom.closest(target, '.add-step-btn') is not None:
            flow_id = self._closest_attribute(target, 'data-flow-id')
            if flow_id:
                self._emit('step:add', {'flow_id': flow_id})

        if dom.closest(target, '.edit-step-btn') is not None:
            step_id = self._closest_attribute(target, 'data-step-id')
            if step_id:
                self._emit('step:edit', {'step_id': step_id, 'flow_id': self._closest_attribute(target, 'data-flow-id')})
                event.stop_propagation()

        if dom.closest(target, '.delete-step-btn') is not None:
            step_id = self._closest_attribute(target, 'data-step-id')
            if step_id:
                if self.confirm('Are you sure you want to delete this step?'):
                    self._emit('step:delete', {'step_id': step_id, 'flow_id': self._closest_attribute(target, 'data-flow-id')})
                event.stop_propagation()

    def _closest_attribute(self, element, name: str) -> Optional[str]:
        owner = self.dom.closest(element, f'[{name}]')
        return owner.getAttribute(name) if owner is not None else None

    def _on_flows_changed(self, payload: Dict[str, Any]) -> None:
        self.render_flows(payload.get('flows') or {}, payload.get('active_flow_id'))

    def _on_flow_state_changed(self, payload: Dict[str, Any]) -> None:
        self.render_active_flow(
            payload.get('flow'),
            payload.get('step_statuses'),
            bool(payload.get('is_running', False))
        )

    def _coerce_flow(self, flow: FlowLike) -> Flow:
        if isinstance(flow, Flow):
            return flow
        return Flow.model_validate(flow)

    def _emit(self, topic: str, payload: Dict[str, Any]) -> None:
        self.logger.debug(f"UI event {topic}", payload)
        self.event_bus.emit(topic, payload)
