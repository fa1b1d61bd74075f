"""Command line interface for managing workflows and order progress."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

import typer

from .catalog import WorkflowCatalog
from .config import configure_logging, load_config
from .contracts import ExternalStatusCode
from .directory import InMemoryOrderDirectory
from .engine import TransitionResult
from .errors import NoChange, OrderflowError
from .persistence import get_repository
from .projection import CustomerProgressView
from .service import ProgressService

T = TypeVar("T")

app = typer.Typer(help="CLI for order fulfillment workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
progress_app = typer.Typer(help="Commands for inspecting and moving orders")

app.add_typer(workflow_app, name="workflow")
app.add_typer(progress_app, name="progress")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Logging level, e.g. DEBUG"),
) -> None:
    """Orderflow CLI entry point."""
    if log_level:
        configure_logging(log_level)


def _service() -> ProgressService:
    repository = get_repository()
    # no order system behind the CLI: every order id is accepted
    directory = InMemoryOrderDirectory(
        WorkflowCatalog(repository, repository), auto_register=True
    )
    return ProgressService.from_config(
        config=load_config(), repository=repository, directory=directory
    )


def _run(awaitable: Awaitable[T]) -> T:
    try:
        return asyncio.run(awaitable)
    except NoChange as exc:
        typer.echo(f"Unchanged: order {exc.record.order_id} already at {exc.record.current_stage_id}")
        raise typer.Exit(code=0)
    except OrderflowError as exc:
        typer.secho(f"Error ({exc.code}): {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_result(result: TransitionResult) -> None:
    record = result.record
    if result.applied:
        typer.echo(f"Order {record.order_id}: {result.previous_stage_id} -> {record.current_stage_id}")
    else:
        typer.echo(f"Order {record.order_id}: unchanged at {record.current_stage_id}")


@workflow_app.command("list")
def workflow_list(
    include_inactive: bool = typer.Option(False, "--all", help="Include inactive workflows"),
) -> None:
    """
    List workflow definitions.

    The default workflow is listed first and marked with an asterisk.

    Example:
        orderflow workflow list
        # Output: * standard-shipping    Standard Shipping    4 stages
    """
    service = _service()
    definitions = _run(service.catalog.list(include_inactive=include_inactive))
    if not definitions:
        typer.echo("No workflows found")
        return
    for definition in definitions:
        marker = "*" if definition.is_default else " "
        typer.echo(
            f"{marker} {definition.id}\t{definition.name}\t{len(definition.stages)} stages"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show the stages of a workflow, by id or slug."""
    service = _service()
    definition = _run(service.catalog.get(workflow_id))
    typer.echo(f"Workflow {definition.id}: {definition.name} (revision {definition.revision})")
    if definition.description:
        typer.echo(definition.description)
    for stage in definition.stages:
        flags = []
        if stage.is_terminal:
            flags.append("terminal")
        if not stage.customer_visible:
            flags.append("internal")
        if stage.external_status_triggers:
            triggers = ",".join(sorted(t.value for t in stage.external_status_triggers))
            flags.append(f"triggers={triggers}")
        suffix = f" [{'; '.join(flags)}]" if flags else ""
        typer.echo(f"  {stage.index}. {stage.id} - {stage.label}{suffix}")


@workflow_app.command("seed")
def workflow_seed() -> None:
    """Install the built-in workflow templates that are missing."""
    service = _service()
    created = _run(service.catalog.seed_defaults())
    if not created:
        typer.echo("All built-in workflows already installed")
        return
    for definition in created:
        typer.echo(f"Installed {definition.id}")


@progress_app.command("show")
def progress_show(
    order_id: str,
    customer: bool = typer.Option(False, "--customer", help="Show the customer view"),
) -> None:
    """
    Show an order's progress.

    The admin view includes the full history with overrides, reasons and
    actors. ``--customer`` shows only what the customer sees.

    Example:
        orderflow progress show ord-1
        orderflow progress show ord-1 --customer
    """
    service = _service()
    view = _run(service.progress(order_id, customer=customer))
    if isinstance(view, CustomerProgressView):
        typer.echo(f"Order {view.order_id}: {view.current_stage_label}")
        if view.current_stage_message:
            typer.echo(view.current_stage_message)
        for label in view.completed_stage_labels:
            typer.echo(f"  done: {label}")
        typer.echo(f"Stages remaining: {view.estimated_stages_remaining}")
        if view.estimated_delivery:
            typer.echo(f"Estimated delivery: {view.estimated_delivery.isoformat()}")
        return

    typer.echo(
        f"Order {view.order_id}: {view.current_stage_label} "
        f"({view.order_status.value}) on {view.workflow_id}, version {view.version}"
    )
    typer.echo(f"Auto-sync: {'on' if view.auto_sync_enabled else 'off'}")
    for entry in view.history:
        line = f"- {entry.from_stage_id or '(start)'} -> {entry.to_stage_id} [{entry.source.value}]"
        if entry.is_override:
            line += f" override: {entry.reason}"
        if entry.actor_id:
            line += f" by {entry.actor_id}"
        typer.echo(line)


@progress_app.command("list")
def progress_list(
    workflow_id: Optional[str] = typer.Option(None, "--workflow", help="Filter by workflow id"),
) -> None:
    """List orders with a progress record."""
    service = _service()
    records = _run(service.list_progress(workflow_id))
    if not records:
        typer.echo("No orders found")
        return
    for record in records:
        typer.echo(f"{record.order_id}\t{record.workflow_id}\t{record.current_stage_id}")


@progress_app.command("init")
def progress_init(order_id: str) -> None:
    """Create the order's progress record at the first stage."""
    service = _service()
    record = _run(service.initialize(order_id))
    typer.echo(f"Order {record.order_id} on {record.workflow_id} at {record.current_stage_id}")


@progress_app.command("assign")
def progress_assign(order_id: str, workflow_id: str) -> None:
    """Put an order that has not left its first stage on another workflow."""
    service = _service()
    record = _run(service.assign_workflow(order_id, workflow_id))
    typer.echo(f"Order {record.order_id} on {record.workflow_id} at {record.current_stage_id}")


@progress_app.command("advance")
def progress_advance(
    order_id: str,
    actor: Optional[str] = typer.Option(None, help="Who is making the change"),
    notes: Optional[str] = typer.Option(None),
) -> None:
    """Move the order to the next stage."""
    service = _service()
    _echo_result(_run(service.advance(order_id, actor_id=actor, notes=notes)))


@progress_app.command("transition")
def progress_transition(
    order_id: str,
    stage_id: str,
    override: bool = typer.Option(False, "--override", help="Mark as a manual override"),
    reason: Optional[str] = typer.Option(None, help="Required for overrides, jumps and moves back"),
    actor: Optional[str] = typer.Option(None),
    notes: Optional[str] = typer.Option(None),
) -> None:
    """Move the order to a specific stage."""
    service = _service()
    result = _run(
        service.transition(
            order_id,
            stage_id,
            actor_id=actor,
            is_override=override,
            reason=reason,
            notes=notes,
        )
    )
    _echo_result(result)


@progress_app.command("revert")
def progress_revert(
    order_id: str,
    stage_id: str,
    reason: Optional[str] = typer.Option(None),
    actor: Optional[str] = typer.Option(None),
    notes: Optional[str] = typer.Option(None),
) -> None:
    """Move the order back to an earlier stage."""
    service = _service()
    _echo_result(_run(service.revert(order_id, stage_id, reason, actor_id=actor, notes=notes)))


@progress_app.command("skip")
def progress_skip(
    order_id: str,
    stage_id: str,
    reason: Optional[str] = typer.Option(None),
    actor: Optional[str] = typer.Option(None),
    notes: Optional[str] = typer.Option(None),
) -> None:
    """Jump the order forward to a later stage."""
    service = _service()
    _echo_result(_run(service.skip(order_id, stage_id, reason, actor_id=actor, notes=notes)))


@progress_app.command("auto-sync")
def progress_auto_sync(
    order_id: str,
    enabled: bool = typer.Option(..., "--enable/--disable", help="Follow carrier tracking"),
) -> None:
    """Turn carrier auto-sync on or off for an order."""
    service = _service()
    record = _run(service.set_auto_sync(order_id, enabled))
    typer.echo(f"Order {record.order_id}: auto-sync {'on' if record.auto_sync_enabled else 'off'}")


@progress_app.command("sync")
def progress_sync(order_id: str, status_code: ExternalStatusCode) -> None:
    """Apply a normalized carrier status, e.g. TRANSIT or DELIVERED."""
    service = _service()
    result = _run(service.sync_external_event(order_id, status_code))
    typer.echo(f"Order {result.order_id}: {result.outcome.value}")
    if result.record is not None:
        typer.echo(f"Current stage: {result.record.current_stage_id}")


if __name__ == "__main__":
    app()
