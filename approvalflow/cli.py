"""Command line interface for inspecting approval workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from approvalflow.contracts import Stage, Workflow
from approvalflow.persistence import get_repository

app = typer.Typer(help="CLI for document approval workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for inspecting workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Approvalflow CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _format_stage(position: int, stage: Stage, current: bool) -> str:
    marker = "*" if current else "-"
    line = f"{marker} [{position}] {stage.name} ({stage.assignee}): {stage.status.value}"
    if stage.action:
        line += f" / {stage.action.value}"
    if stage.note:
        line += f" - {stage.note}"
    return line


async def _find(identifier: str) -> Optional[Workflow]:
    repo = get_repository()
    workflow = await repo.get_by_document_id(identifier)
    if workflow is None:
        workflow = await repo.get_workflow(identifier)
    return workflow


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows with their overall status.

    Example:
        approvalflow workflow list
        # Output: 9b1d...    doc-1    In Progress    stage 2/4
    """
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(
            f"{wf.id}\t{wf.document_id}\t{wf.overall_status.value}"
            f"\tstage {wf.current_stage_index}/{len(wf.stages) - 1}"
        )


@workflow_app.command("show")
def workflow_show(identifier: str) -> None:
    """
    Show the stages of a workflow.

    Args:
        identifier: Document id, or workflow id (get from 'workflow list')

    Example:
        approvalflow workflow show doc-1
        # Output: Workflow 9b1d... for document doc-1: In Progress (version 3)
        #         - [0] Draft Submission (u1): completed / Approved
        #         * [1] Alice Review (u2): current
    """
    wf = asyncio.run(_find(identifier))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Workflow {wf.id} for document {wf.document_id}: "
        f"{wf.overall_status.value} (version {wf.version})"
    )
    for idx, stage in enumerate(wf.stages):
        typer.echo(_format_stage(idx, stage, idx == wf.current_stage_index))


@workflow_app.command("pending")
def workflow_pending(user_id: str) -> None:
    """List workflows waiting on ``user_id``."""
    repo = get_repository()
    workflows = asyncio.run(repo.list_pending_for_user(user_id))
    if not workflows:
        typer.echo(f"No pending approvals for {user_id}")
        return
    for wf in workflows:
        stage = wf.current_stage
        typer.echo(f"{wf.document_id}\t{stage.name if stage else ''}\t{wf.id}")


@workflow_app.command("history")
def workflow_history(document_id: str) -> None:
    """Show the completed and rejected stages of a document's workflow."""
    repo = get_repository()
    wf = asyncio.run(repo.get_by_document_id(document_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    history = wf.history()
    if not history:
        typer.echo("No history yet")
        return
    for stage in history:
        when = stage.action_date.isoformat() if stage.action_date else "-"
        action = stage.action.value if stage.action else stage.status.value
        typer.echo(f"{when}\t{stage.name}\t{stage.assignee}\t{action}\t{stage.note or ''}")


if __name__ == "__main__":
    app()
