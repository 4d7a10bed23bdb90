"""
Pydantic request/response models for the HTTP surface.

Tool payloads stay opaque dicts; item-level validation of manual prune
requests happens in ``contextgc.tools`` so that malformed items surface as
400 responses with the tool's own message.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TransformRequest(BaseModel):
    messages: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Full transcript for the session, oldest entry first",
    )


class TransformResponse(BaseModel):
    messages: List[Dict[str, Any]]
    prunable_tools: str = ""
    notification: Optional[str] = None
    tokens_collected: int = 0
    tools_collected: int = 0


class PruneRequest(BaseModel):
    items: List[Any] = Field(
        default_factory=list,
        description="Entries of the form {id: numeric-string, distillation?: string}",
    )
    reason: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None


class PruneResponse(BaseModel):
    result: str
    tools_pruned: int
    tokens_saved: int
    pruned_ids: List[str]
    dropped_ids: List[str] = Field(default_factory=list)
    notification: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None
