from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class PublishSecret(BaseModel):
    """Reply of /terraform/v1/hooks/srs/secret/query."""
    publish: str = ""

    model_config = ConfigDict(extra="ignore")


class SecretUpdate(BaseModel):
    secret: str
