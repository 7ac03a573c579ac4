from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ServerVersions(BaseModel):
    """Reply of /api/v1/versions."""
    major: int = 0
    minor: int = 0
    revision: int = 0
    version: str = ""

    model_config = ConfigDict(extra="ignore")
