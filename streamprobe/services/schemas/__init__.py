from streamprobe.services.schemas.hooks import (
    PublishSecret,
    SecretUpdate,
)
from streamprobe.services.schemas.versions import (
    ServerVersions,
)

__all__ = [
    "PublishSecret",
    "SecretUpdate",
    "ServerVersions",
]
