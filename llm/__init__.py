from .mediator import LLMError, LLMMediator, TaskRoute

__all__ = [
    "LLMError",
    "LLMMediator",
    "TaskRoute",
]
