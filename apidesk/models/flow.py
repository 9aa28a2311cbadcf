"""
Flow and step models

A flow is an ordered list of steps. Steps are a tagged union on their
``type`` field; parse_step() and Flow validation pick the concrete class.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

class StepType(str, Enum):
    """Kinds of flow steps"""
    REQUEST = "request"
    DELAY = "delay"
    CONDITION = "condition"
    LOG = "log"

class StepBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    id: str
    name: str = ''
    description: Optional[str] = None

class RequestStep(StepBase):
    type: Literal['request'] = 'request'
    method: Optional[str] = None
    url: Optional[str] = None
    endpoint_id: Optional[str] = Field(default=None, alias='endpointId')
    headers: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None

class DelayStep(StepBase):
    type: Literal['delay'] = 'delay'
    delay: int = Field(default=1000, ge=0)  # milliseconds

class ConditionStep(StepBase):
    type: Literal['condition'] = 'condition'
    condition: Optional[str] = None
    true_step_id: Optional[str] = Field(default=None, alias='trueStepId')
    false_step_id: Optional[str] = Field(default=None, alias='falseStepId')

class LogStep(StepBase):
    type: Literal['log'] = 'log'
    message: Optional[str] = None

FlowStep = Annotated[
    Union[RequestStep, DelayStep, ConditionStep, LogStep],
    Field(discriminator='type')
]

_step_adapter = TypeAdapter(FlowStep)

def parse_step(data: Dict[str, Any]):
    """Validate a raw step mapping into its concrete step class"""
    return _step_adapter.validate_python(data)

class Flow(BaseModel):
    """User-authored sequence of steps"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    steps: List[FlowStep] = Field(default_factory=list)

    def get_step(self, step_id: str):
        for step in self.steps:
            if step.id == step_id:
                return step
        return None
