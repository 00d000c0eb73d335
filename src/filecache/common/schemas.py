"""Shared response models for the file caching service."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class APIResponse(BaseModel):
    """JSON envelope returned by every non-file endpoint."""

    success: bool
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ServiceInfo(BaseModel):
    """Metadata advertised on the root endpoint."""

    version: str
