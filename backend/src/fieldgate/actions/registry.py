"""Action handler registry.

Actions are declared in YAML; the code behind them is registered here by
name, in-process, at application startup. Follows the same pattern as the
validator registry: explicit registration, no dynamic imports.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fieldgate.auth.types import Principal


@dataclass
class ActionContext:
    """Runtime context passed to every action handler.

    Attributes:
        project: Project the action belongs to
        action: Action name
        principal: The caller
        input: Validated input, keyed by the action's field names
        services: RecordService bound for the request (CRUD as the caller)
    """

    project: str
    action: str
    principal: Principal
    input: dict[str, Any]
    services: Any = None  # RecordService (avoids circular import)


@dataclass
class ActionResult:
    """Return value of an action handler."""

    data: dict[str, Any] | None = None
    message: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "message": self.message, "warnings": list(self.warnings)}


# Handler signature: async (ActionContext) -> ActionResult | dict | None
ActionFn = Callable[[ActionContext], Awaitable["ActionResult | dict[str, Any] | None"]]


class ActionRegistry:
    """Registry for action handlers.

    Example:
        @action_handler("recalculate_price")
        async def recalculate_price(ctx: ActionContext) -> ActionResult:
            ...
    """

    _handlers: dict[str, ActionFn] = {}

    @classmethod
    def register(cls, name: str, handler: ActionFn) -> None:
        """Register a handler by name.

        Idempotent: re-registering the same name is a no-op.
        """
        if name in cls._handlers:
            return
        cls._handlers[name] = handler

    @classmethod
    def get(cls, name: str) -> ActionFn:
        """Get a registered handler.

        Raises:
            ValueError: If the handler is not registered
        """
        if name not in cls._handlers:
            raise ValueError(
                f"Action handler '{name}' is not registered. "
                "Handlers must be explicitly registered at application startup."
            )
        return cls._handlers[name]

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._handlers

    @classmethod
    def list_registered(cls) -> list[str]:
        return sorted(cls._handlers.keys())

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Primarily for testing."""
        cls._handlers.clear()


def action_handler(name: str) -> Callable[[ActionFn], ActionFn]:
    """Decorator to register an action handler."""

    def decorator(fn: ActionFn) -> ActionFn:
        ActionRegistry.register(name, fn)
        return fn

    return decorator
