"""
Data models for apidesk
"""

from .endpoint import EndpointDescriptor, EndpointParameter
from .flow import (
    Flow, FlowStep, StepType, RequestStep, DelayStep, ConditionStep, LogStep, parse_step
)

__all__ = [
    'EndpointDescriptor',
    'EndpointParameter',
    'Flow',
    'FlowStep',
    'StepType',
    'RequestStep',
    'DelayStep',
    'ConditionStep',
    'LogStep',
    'parse_step'
]
