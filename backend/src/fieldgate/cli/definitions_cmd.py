"""Definition CLI commands: validate and list."""

from pathlib import Path

import click

from fieldgate.config import Settings
from fieldgate.metadata.loader import DefinitionLoader, load_projects
from fieldgate.metadata.validator import validate_project_dir


def _resolve_projects_path(projects_path: Path | None) -> Path:
    if projects_path is not None:
        return projects_path
    return Settings.from_env().projects_path


def _project_dirs(projects_path: Path, project: str | None) -> list[Path]:
    if project is not None:
        return [projects_path / project]
    return sorted(
        p for p in projects_path.iterdir()
        if p.is_dir() and not p.name.startswith((".", "_"))
    )


@click.group()
def definitions():
    """Definition commands."""
    pass


@definitions.command()
@click.option(
    "--path",
    "projects_path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Projects directory (defaults to FIELDGATE_PROJECTS_PATH or ./projects).",
)
@click.option("--project", default=None, help="Validate a single project.")
def validate(projects_path: Path | None, project: str | None):
    """Validate definition units: schema first, then cross-unit checks."""
    projects_path = _resolve_projects_path(projects_path)
    if not projects_path.is_dir():
        click.echo(f"Error: Projects directory not found at {projects_path}", err=True)
        raise SystemExit(1)

    error_count = 0
    for project_dir in _project_dirs(projects_path, project):
        click.echo(click.style(f"Project {project_dir.name}", bold=True))

        # ── Schema (JSON Schema) validation ──────────────────────────────────
        for issue in validate_project_dir(project_dir):
            colour = "red" if issue.severity == "error" else "yellow"
            click.echo(click.style(f"  {issue}", fg=colour))

        # ── Semantic (loader) validation ─────────────────────────────────────
        result = DefinitionLoader(project_dir).load()
        for error in result.errors:
            click.echo(click.style(f"  ✗ {error}", fg="red"))
        for spec in result.collections:
            kind = "singleton" if spec.singleton else "collection"
            click.echo(f"  ✓ {spec.name} ({len(spec.fields)} fields, {kind})")
        for spec in result.actions:
            click.echo(f"  ✓ {spec.name} (action, handler: {spec.handler})")
        error_count += len(result.errors)

    if error_count:
        click.echo(
            click.style(f"\n{error_count} definition error(s) found", fg="red", bold=True)
        )
        raise SystemExit(1)

    click.echo(click.style("\nAll definitions are valid.", fg="green", bold=True))


@definitions.command("list")
@click.option(
    "--path",
    "projects_path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Projects directory (defaults to FIELDGATE_PROJECTS_PATH or ./projects).",
)
def list_cmd(projects_path: Path | None):
    """List projects with their collections and actions."""
    projects_path = _resolve_projects_path(projects_path)
    if not projects_path.is_dir():
        click.echo(f"Error: Projects directory not found at {projects_path}", err=True)
        raise SystemExit(1)

    for name, result in load_projects(projects_path).items():
        click.echo(click.style(name, bold=True))
        for spec in result.collections:
            roles = ", ".join(sorted(spec.roles))
            click.echo(f"  {spec.name:<24} collection  roles: {roles}")
        for spec in result.actions:
            roles = ", ".join(sorted(spec.roles))
            click.echo(f"  {spec.name:<24} action      roles: {roles}")
