"""
Endpoint catalog models
"""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

class EndpointParameter(BaseModel):
    """One request parameter of an endpoint descriptor"""

    model_config = ConfigDict(populate_by_name=True, extra='allow')

    name: str
    location: str = Field(default='query', alias='in')
    description: str = ''
    required: bool = False
    type: str = 'string'
    default: Any = None

class EndpointDescriptor(BaseModel):
    """
    Normalized description of one callable HTTP route.

    Field names are snake_case; the camelCase wire names (requestBody,
    responseExample, requiresAuth, isCustom) are accepted as aliases and
    produced by to_dict().
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    method: str = 'GET'
    path: str = Field(min_length=1)
    name: str
    url: str = ''
    description: str = ''
    category: str = 'Uncategorized'
    parameters: List[EndpointParameter] = Field(default_factory=list)
    headers: Dict[str, Any] = Field(default_factory=dict)
    request_body: Any = Field(default=None, alias='requestBody')
    response_example: Any = Field(default=None, alias='responseExample')
    requires_auth: bool = Field(default=False, alias='requiresAuth')
    tags: List[str] = Field(default_factory=list)
    is_custom: bool = Field(default=False, alias='isCustom')

    @field_validator('method')
    @classmethod
    def normalize_method(cls, v):
        return v.upper()

    @field_validator('parameters', mode='before')
    @classmethod
    def coerce_parameters(cls, v):
        # Bare names are shorthand for {"name": ...}
        if isinstance(v, list):
            return [{'name': item} if isinstance(item, str) else item for item in v]
        return v

    @field_validator('tags', mode='before')
    @classmethod
    def coerce_tags(cls, v):
        if isinstance(v, list):
            return [str(tag) for tag in v]
        return v

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
