"""Model back-end selection."""

from omnimax_agent.models.factory import (
    ModelConfigurationError,
    ModelFactory,
    ModelProvider,
    create_chat_model,
)

__all__ = [
    "ModelConfigurationError",
    "ModelFactory",
    "ModelProvider",
    "create_chat_model",
]
