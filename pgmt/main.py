"""pgmt CLI: all commands."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Annotated

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pgmt.errors import AllocationError, PgmtError
from pgmt.hierarchy import rules
from pgmt.models import IssuePriority, IssueType, IssueView, SprintStatus
from pgmt.service import UNSET, IssueService
from pgmt.settings import PgmtSettings, get_settings, save_default_workspace
from pgmt.stores.json_file import JsonFileStore
from pgmt.stores.memory import InMemoryIssueStore

app = typer.Typer(help="pgmt: projects, issues and the Epic → Story → Subtask hierarchy", no_args_is_help=True)

WorkspaceOpt = Annotated[
    str | None,
    typer.Option("--workspace", "-w", help="Profile name from ~/.config/pgmt/config.toml"),
]
ProjectOpt = Annotated[
    str | None,
    typer.Option("--project", "-p", help="Project key (defaults to default_project)"),
]

_TYPE_STYLE = {
    IssueType.EPIC: "magenta",
    IssueType.STORY: "green",
    IssueType.TASK: "blue",
    IssueType.BUG: "red",
    IssueType.SUBTASK: "cyan",
}


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _configure_logging(level: str) -> None:
    """Attach a rich handler to the pgmt logger once; later calls are no-ops."""
    root = logging.getLogger("pgmt")
    if root.handlers:
        return
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log engine decisions at DEBUG")] = False,
) -> None:
    if verbose:
        _configure_logging("DEBUG")


# ---------------------------------------------------------------------------
# Service factory
# ---------------------------------------------------------------------------


def _build_service(settings: PgmtSettings) -> IssueService:
    match settings.store:
        case "json":
            store = JsonFileStore(settings.store_path.expanduser())
        case "memory":
            store = InMemoryIssueStore()
        case _:
            rprint(f"[red]Unknown store '{settings.store}'. Valid: json, memory[/red]")
            raise typer.Exit(1)
    return IssueService(
        store,
        max_walk_steps=settings.max_walk_steps,
        key_max_attempts=settings.key_max_attempts,
    )


def get_service(workspace: str | None = None) -> IssueService:
    settings = get_settings(workspace=workspace)
    _configure_logging(settings.log_level)
    return _build_service(settings)


def _project_key(project: str | None, workspace: str | None) -> str:
    key = project or get_settings(workspace=workspace).default_project
    if not key:
        rprint("[red]No project specified. Use --project or set default_project in your workspace profile.[/red]")
        raise typer.Exit(1)
    return key


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn engine errors into a red message and exit code 1."""
    try:
        yield
    except AllocationError as exc:
        rprint(f"[red]{exc}[/red] [dim](transient, try again)[/dim]")
        raise typer.Exit(1) from exc
    except PgmtError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _type_cell(issue_type: IssueType) -> str:
    style = _TYPE_STYLE[issue_type]
    return f"[{style}]{issue_type.label}[/{style}]"


def _issue_table(title: str, views: list[IssueView]) -> Table:
    table = Table(title=title)
    table.add_column("Key", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Pri")
    table.add_column("Parent", style="dim")
    table.add_column("Title")
    for view in views:
        table.add_row(
            view.key, _type_cell(view.type), view.status, view.priority.value, view.parent_key or "—", view.title
        )
    return table


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@app.command("create-project")
def create_project(
    key: Annotated[str, typer.Argument(help="Project key, e.g. PGM")],
    name: Annotated[str, typer.Argument(help="Project name")],
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    workspace: WorkspaceOpt = None,
) -> None:
    """Create a project."""
    service = get_service(workspace)
    with _reported_errors():
        project = service.create_project(key.upper(), name, description)
    rprint(f"[green]✓[/green] [bold]{project.key}[/bold] {project.name}")


@app.command("list-projects")
def list_projects(workspace: WorkspaceOpt = None) -> None:
    """List projects with their issue counts."""
    service = get_service(workspace)

    table = Table(title="Projects")
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("Issues", justify="right")
    table.add_column("Done", justify="right", style="green")

    for project in service.list_projects():
        count = service.issue_count(project.key)
        table.add_row(project.key, project.name, str(count.total), str(count.completed))

    rprint(table)


@app.command("update-project")
def update_project(
    key: Annotated[str, typer.Argument(help="Project key")],
    name: Annotated[str | None, typer.Option("--name")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    workspace: WorkspaceOpt = None,
) -> None:
    """Rename a project or change its description."""
    service = get_service(workspace)
    with _reported_errors():
        project = service.update_project(key.upper(), name=name, description=description)
    rprint(f"[green]✓[/green] Updated [bold]{project.key}[/bold] {project.name}")


@app.command("delete-project")
def delete_project(
    key: Annotated[str, typer.Argument(help="Project key")],
    cascade: Annotated[bool, typer.Option("--cascade", help="Also delete its issues and sprints")] = False,
    workspace: WorkspaceOpt = None,
) -> None:
    """Delete a project. Projects that still hold issues need --cascade."""
    service = get_service(workspace)
    with _reported_errors():
        removed = service.delete_project(key.upper(), cascade=cascade)
    rprint(f"[green]✓[/green] Deleted [bold]{key.upper()}[/bold] ({removed} issues)")


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------

DateArg = Annotated[datetime, typer.Argument(formats=["%Y-%m-%d"], help="YYYY-MM-DD")]


@app.command("create-sprint")
def create_sprint(
    name: Annotated[str, typer.Argument(help="Sprint name, unique within the project")],
    start: DateArg,
    end: DateArg,
    goal: Annotated[str | None, typer.Option("--goal")] = None,
    project: ProjectOpt = None,
    workspace: WorkspaceOpt = None,
) -> None:
    """Create a sprint."""
    service = get_service(workspace)
    project_key = _project_key(project, workspace)
    with _reported_errors():
        sprint = service.create_sprint(project_key, name, start.date(), end.date(), goal=goal)
    rprint(f"[green]✓[/green] [bold]{sprint.name}[/bold] {sprint.start_date} → {sprint.end_date}")


@app.command("list-sprints")
def list_sprints(project: ProjectOpt = None, workspace: WorkspaceOpt = None) -> None:
    """List the sprints of a project."""
    service = get_service(workspace)
    project_key = _project_key(project, workspace)
    with _reported_errors():
        sprints = service.list_sprints(project_key)

    table = Table(title=f"{project_key} Sprints")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Goal")
    for sprint in sprints:
        table.add_row(sprint.name, sprint.status.value, str(sprint.start_date), str(sprint.end_date), sprint.goal or "")

    rprint(table)


@app.command("sprint-status")
def sprint_status(
    name: Annotated[str, typer.Argument(help="Sprint name")],
    status: Annotated[SprintStatus, typer.Argument(help="New status")],
    project: ProjectOpt = None,
    workspace: WorkspaceOpt = None,
) -> None:
    """Start, complete or cancel a sprint."""
    service = get_service(workspace)
    project_key = _project_key(project, workspace)
    with _reported_errors():
        sprint = service.set_sprint_status(project_key, name, status)
    rprint(f"[green]✓[/green] [bold]{sprint.name}[/bold] is now {sprint.status.value}")


@app.command("sprint-issues")
def sprint_issues(
    name: Annotated[str, typer.Argument(help="Sprint name")],
    project: ProjectOpt = None,
    workspace: WorkspaceOpt = None,
) -> None:
    """List the issues planned into a sprint."""
    service = get_service(workspace)
    project_key = _project_key(project, workspace)
    with _reported_errors():
        views = service.sprint_issues(project_key, name)
    rprint(_issue_table(f"{project_key} {name}", views))


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


@app.command("create-issue")
def create_issue(
    title: Annotated[str, typer.Argument(help="Issue title")],
    issue_type: Annotated[IssueType, typer.Option("--type", "-t", help="Issue type")] = IssueType.TASK,
    parent: Annotated[str | None, typer.Option("--parent", help="Parent issue key, e.g. PGM-1")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    priority: Annotated[IssuePriority, typer.Option("--priority")] = IssuePriority.MEDIUM,
    assignee: Annotated[str | None, typer.Option("--assignee", "-a")] = None,
    points: Annotated[int | None, typer.Option("--points", min=0, help="Story points")] = None,
    sprint: Annotated[str | None, typer.Option("--sprint", help="Sprint name")] = None,
    project: ProjectOpt = None,
    workspace: WorkspaceOpt = None,
) -> None:
    """Create an issue, checking the hierarchy rules first."""
    service = get_service(workspace)
    project_key = _project_key(project, workspace)
    with _reported_errors():
        issue = service.create_issue(
            project_key,
            title,
            issue_type,
            parent_key=parent,
            description=description,
            priority=priority,
            assignee=assignee,
            story_points=points,
            sprint=sprint,
        )
    under = f" under {parent}" if parent else ""
    rprint(f"[green]✓[/green] [bold]{issue.key}[/bold] {_type_cell(issue.type)} {issue.title}{under}")


@app.command("list-issues")
def list_issues(project: ProjectOpt = None, workspace: WorkspaceOpt = None) -> None:
    """List every issue in a project."""
    service = get_service(workspace)
    project_key = _project_key(project, workspace)
    with _reported_errors():
        views = service.list_issues(project_key)
    rprint(_issue_table(f"{project_key} Issues", views))


@app.command("assigned")
def assigned(
    assignee: Annotated[str, typer.Argument(help="Assignee name")],
    workspace: WorkspaceOpt = None,
) -> None:
    """List issues assigned to someone, across all projects."""
    service = get_service(workspace)
    rprint(_issue_table(f"Assigned to {assignee}", service.assigned_to(assignee)))


@app.command("get-issue")
def get_issue(
    key: Annotated[str, typer.Argument(help="Issue key (e.g. PGM-2)")],
    workspace: WorkspaceOpt = None,
) -> None:
    """Show an issue, its ancestry and its direct children."""
    service = get_service(workspace)
    with _reported_errors():
        view = service.view(key)
        ancestry = service.ancestry(key)

    table = Table(title=f"{view.key}: {view.title}")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Type", _type_cell(view.type))
    table.add_row("Status", view.status)
    table.add_row("Priority", view.priority.value)
    table.add_row("Project", view.project_key or "—")
    table.add_row("Assignee", view.assignee or "Unassigned")
    if view.sprint_name:
        table.add_row("Sprint", view.sprint_name)
    if view.story_points is not None:
        table.add_row("Story points", str(view.story_points))
    if ancestry:
        table.add_row("Path", " › ".join([*(a.key for a in reversed(ancestry)), view.key]))
    elif view.parent_id:
        table.add_row("Parent", "[yellow](missing)[/yellow]")
    table.add_row("Description", view.description or "_No description provided._")

    rprint(table)
    if view.children:
        rprint(_issue_table("Children", view.children))


@app.command("subtasks")
def subtasks(
    key: Annotated[str, typer.Argument(help="Parent issue key")],
    workspace: WorkspaceOpt = None,
) -> None:
    """List the direct children of an issue."""
    service = get_service(workspace)
    with _reported_errors():
        children = service.subtasks(key)
    rprint(_issue_table(f"{key} Children", children))


def _clearable(value: str | None, clear: bool, flag: str) -> object:
    if value is not None and clear:
        rprint(f"[red]--{flag} and --no-{flag} are mutually exclusive.[/red]")
        raise typer.Exit(1)
    if clear:
        return None
    return UNSET if value is None else value


@app.command("update-issue")
def update_issue(
    key: Annotated[str, typer.Argument(help="Issue key")],
    title: Annotated[str | None, typer.Option("--title")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    status: Annotated[str | None, typer.Option("--status", "-s")] = None,
    priority: Annotated[IssuePriority | None, typer.Option("--priority")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee", "-a")] = None,
    unassign: Annotated[bool, typer.Option("--no-assignee", help="Clear the assignee")] = False,
    sprint: Annotated[str | None, typer.Option("--sprint", help="Move into this sprint")] = None,
    no_sprint: Annotated[bool, typer.Option("--no-sprint", help="Take the issue out of its sprint")] = False,
    parent: Annotated[str | None, typer.Option("--parent", help="Move under this issue key")] = None,
    detach: Annotated[bool, typer.Option("--detach", help="Remove the parent link")] = False,
    workspace: WorkspaceOpt = None,
) -> None:
    """Update fields, move an issue to a new parent or plan it into a sprint.

    The description can be replaced but not cleared.
    """
    if parent and detach:
        rprint("[red]--parent and --detach are mutually exclusive.[/red]")
        raise typer.Exit(1)
    assignee_change = _clearable(assignee, unassign, "assignee")
    sprint_change = _clearable(sprint, no_sprint, "sprint")

    service = get_service(workspace)
    parent_key: object = UNSET
    if parent:
        parent_key = parent
    elif detach:
        parent_key = None

    with _reported_errors():
        issue = service.update_issue(
            key,
            title=title,
            description=description,
            status=status,
            priority=priority,
            assignee=assignee_change,
            parent_key=parent_key,
            sprint=sprint_change,
        )
    rprint(f"[green]✓[/green] Updated [bold]{issue.key}[/bold]")


@app.command("delete-issue")
def delete_issue(
    key: Annotated[str, typer.Argument(help="Issue key")],
    cascade: Annotated[bool, typer.Option("--cascade", help="Also delete its children")] = False,
    workspace: WorkspaceOpt = None,
) -> None:
    """Delete an issue. Issues with children need --cascade."""
    service = get_service(workspace)
    with _reported_errors():
        removed = service.delete_issue(key, cascade=cascade)
    rprint(f"[green]✓[/green] Deleted {', '.join(removed)}")


@app.command("rules")
def rules_cmd() -> None:
    """Show which issue types may contain which."""
    table = Table(title="Hierarchy Rules")
    table.add_column("Type")
    table.add_column("May contain")
    table.add_column("May be placed under")

    for issue_type in IssueType:
        children = ", ".join(t.label for t in IssueType if t in rules.allowed_child_types(issue_type))
        parents = ", ".join(t.label for t in IssueType if t in rules.valid_parent_types_for(issue_type))
        table.add_row(_type_cell(issue_type), children or "—", parents or "—")

    rprint(table)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@app.command("set-default")
def set_default(
    workspace: Annotated[str, typer.Argument(help="Profile name to set as default")],
) -> None:
    """Set the default workspace profile in ~/.config/pgmt/config.toml."""
    with _reported_errors():
        path = save_default_workspace(workspace)
    rprint(f'[green]✓[/green] Default workspace set to "{workspace}" in {path}')


@app.command("config-show")
def config_show(workspace: WorkspaceOpt = None) -> None:
    """Show resolved configuration."""
    settings = get_settings(workspace=workspace)

    def unset(val: object) -> str:
        return "[dim](not set)[/dim]" if val is None else str(val)

    table = Table(title="pgmt Configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("default_workspace", unset(settings.default_workspace))
    table.add_row("store", settings.store)
    table.add_row("store_path", str(settings.store_path))
    table.add_row("default_project", unset(settings.default_project))
    table.add_row("max_walk_steps", str(settings.max_walk_steps))
    table.add_row("key_max_attempts", str(settings.key_max_attempts))
    table.add_row("log_level", settings.log_level)

    rprint(table)
