"""Framework-provided action handlers."""

from fieldgate.actions.registry import ActionContext, ActionRegistry, ActionResult
from fieldgate.errors import NotFoundError


async def restore_snapshot(ctx: ActionContext) -> ActionResult:
    """Write a snapshot's payload back onto its record.

    Input: ``collection``, ``record`` (id) and ``snapshot`` (id). The restore
    runs as the caller, so fields the caller cannot read or write are left
    untouched.
    """
    collection = ctx.input["collection"]
    record_id = ctx.input["record"]
    snapshot_id = ctx.input["snapshot"]

    snapshots = await ctx.services.list_snapshots(
        ctx.project, collection, ctx.principal, record_id
    )
    snapshot = next((s for s in snapshots if s["id"] == snapshot_id), None)
    if snapshot is None:
        raise NotFoundError(f"Snapshot {snapshot_id} not found for record {record_id}")

    result = await ctx.services.update_record(
        ctx.project, collection, ctx.principal, record_id, snapshot["payload"]
    )
    return ActionResult(
        data=result.data,
        message=f"Restored record {record_id} from snapshot {snapshot_id}",
        warnings=result.warnings,
    )


def register_builtin_actions() -> None:
    """Register framework-provided handlers. Called at application startup."""
    ActionRegistry.register("restore_snapshot", restore_snapshot)
