"""Command line interface for durafetch workflows."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer

from durafetch import build_client, get_store
from durafetch.contracts import PendingStatus, WorkflowResult
from durafetch.errors import InstanceNotFoundError, UnknownWorkflowError
from durafetch.registry import FETCH_FIXED_HTTP

app = typer.Typer(help="CLI for durafetch workflows")

workflow_app = typer.Typer(help="Commands for inspecting persisted workflows")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main() -> None:
    """durafetch CLI entry point."""
    pass


def _echo_outcome(instance_id: str, outcome: WorkflowResult | PendingStatus) -> None:
    typer.echo(f"Instance ID: {instance_id}")
    if isinstance(outcome, WorkflowResult):
        typer.echo(f"Status code: {outcome.status_code}")
        if outcome.content:
            typer.echo(outcome.content)
    else:
        typer.echo(f"Status: {outcome.status.value}")
        typer.echo(f"Poll with: durafetch status {instance_id}")


@app.command("start")
def start(
    workflow_type: str = typer.Argument(FETCH_FIXED_HTTP),
    wait: Optional[float] = typer.Option(
        None, help="Seconds to wait for a result before returning the status"
    ),
) -> None:
    """
    Start a workflow instance and run it in this process.

    Without ``--wait`` the command prints the instance ID and keeps running
    until the workflow reaches a terminal state, since execution happens
    in-process. With ``--wait`` it returns after at most that many seconds;
    unfinished work resumes with ``durafetch recover`` when a durable database
    is configured.

    Example:
        durafetch start
        durafetch start fetch_fixed_http --wait 60
    """

    async def _run() -> tuple[str, WorkflowResult | PendingStatus]:
        client = build_client()
        try:
            instance_id, outcome = await client.start_and_wait(workflow_type, wait=wait)
            if wait is None:
                typer.echo(f"Started {workflow_type}. Instance ID: {instance_id}")
                await client.host.join()
                outcome = await client.wait_or_status(instance_id, 0)
            return instance_id, outcome
        finally:
            await client.host.shutdown()

    try:
        instance_id, outcome = asyncio.run(_run())
    except UnknownWorkflowError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_outcome(instance_id, outcome)


@app.command("status")
def status(instance_id: str) -> None:
    """Print the current status of a workflow instance."""

    async def _status():
        return await build_client().get_status(instance_id)

    try:
        wf = asyncio.run(_status())
    except InstanceNotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"{wf.instance_id}\t{wf.status.value}")
    if wf.result is not None:
        typer.echo(f"Result: {wf.result.status_code}")


@app.command("recover")
def recover() -> None:
    """
    Resume every running workflow from its last checkpoint.

    Recorded attempts are replayed, persisted timers are re-armed, and the
    command exits once all resumed workflows have finished.
    """

    async def _recover() -> list[str]:
        client = build_client()
        try:
            ids = await client.host.recover()
            await client.host.join()
            return ids
        finally:
            await client.host.shutdown()

    ids = asyncio.run(_recover())
    if not ids:
        typer.echo("No running workflows to recover")
        return
    for instance_id in ids:
        typer.echo(f"Recovered {instance_id}")


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows with their current status.

    Example:
        durafetch workflow list
        # Output: 3f2a...    completed
        #         9b1c...    running
    """
    store = get_store()
    workflows = asyncio.run(store.list_instances())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.instance_id}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(instance_id: str) -> None:
    """
    Show the attempt history of a workflow.

    Example:
        durafetch workflow show 3f2a...
        # Output: Workflow 3f2a...: completed
        #         Result: 200
        #         - attempt 1: 500 (2024-01-01T10:00:00+00:00)
        #         - attempt 2: 200 (2024-01-01T10:00:05+00:00)
    """
    store = get_store()
    wf = asyncio.run(store.get(instance_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.instance_id}: {wf.status.value}")
    if wf.result is not None:
        typer.echo(f"Result: {wf.result.status_code}")
    if wf.wake_at is not None:
        typer.echo(f"Next attempt at: {wf.wake_at.isoformat()}")
    for attempt in wf.attempts:
        typer.echo(
            f"- attempt {attempt.attempt_number}: {attempt.status_code}"
            + (f" [{attempt.error}]" if attempt.error else "")
            + f" ({attempt.timestamp.isoformat()})"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
