"""Action handlers for fieldgate.

Usage:
    from fieldgate.actions import action_handler, ActionContext, ActionResult

    @action_handler("archive_car")
    async def archive_car(ctx: ActionContext) -> ActionResult:
        ...
"""

from fieldgate.actions.builtin import register_builtin_actions
from fieldgate.actions.registry import (
    ActionContext,
    ActionFn,
    ActionRegistry,
    ActionResult,
    action_handler,
)

__all__ = [
    "ActionContext",
    "ActionFn",
    "ActionRegistry",
    "ActionResult",
    "action_handler",
    "register_builtin_actions",
]
