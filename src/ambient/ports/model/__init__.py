from __future__ import annotations

from .client import ModelClient, ModelError, ModelMalformed, ModelTimeout, ModelUnreachable, OpenAICompatClient

__all__ = [
    "ModelClient",
    "ModelError",
    "ModelMalformed",
    "ModelTimeout",
    "ModelUnreachable",
    "OpenAICompatClient",
]
