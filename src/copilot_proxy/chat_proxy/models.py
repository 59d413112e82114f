from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SHOW_TEMPLATE = "{{ .System }}\n{{ .Prompt }}"


class ShowRequest(BaseModel):
    name: Optional[str] = None
    model: Optional[str] = None

    class Config:
        extra = "allow"


class ModelDetails(BaseModel):
    format: str
    family: str
    families: List[str]
    parameter_size: str
    quantization_level: str


class ShowResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    template: str = SHOW_TEMPLATE
    capabilities: List[str] = Field(default_factory=list)
    details: ModelDetails
    model_info: Dict[str, Any] = Field(default_factory=dict)


class VersionResponse(BaseModel):
    version: str


class RunningModelsResponse(BaseModel):
    models: List[Dict[str, Any]] = Field(default_factory=list)
