from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from fnmanifest.config import BuildConfig, load_config
from fnmanifest.domain.errors import ManifestError
from fnmanifest.manifest.serialize import endpoint_to_wire
from fnmanifest.orchestrator.pipeline import compile_manifest, run_build

app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _project_root(repo: str) -> Path:
    repo_path = Path(repo).expanduser().resolve()
    if not repo_path.exists():
        raise typer.BadParameter(f"Project path does not exist: {repo_path}")
    if not repo_path.is_dir():
        raise typer.BadParameter(f"Project path is not a directory: {repo_path}")
    return repo_path


def _fail(e: ManifestError) -> NoReturn:
    err_console.print(f"[bold red]error[/bold red] {escape(f'[{e.kind}] {e}')}")
    raise typer.Exit(code=1)


def _load(repo_path: Path, **overrides: object) -> BuildConfig:
    try:
        return load_config(repo_path, overrides=overrides)
    except ManifestError as e:
        _fail(e)


@app.command()
def build(
    repo: str = typer.Argument(".", help="Path to the functions project"),
    out: Optional[str] = typer.Option(None, help="Manifest path (default: .fnmanifest/functions.yaml)"),
    format: Optional[str] = typer.Option(None, help="Output format: yaml|json"),
    workers: Optional[int] = typer.Option(None, help="Parser threads (default: CPU count)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Scan the project and write its deployment manifest."""
    _setup_logging(verbose)
    repo_path = _project_root(repo)
    config = _load(repo_path, output=out, format=format, workers=workers)

    try:
        result = run_build(repo_path, config)
    except ManifestError as e:
        _fail(e)

    manifest = result.manifest
    console.print(f"[bold green]fnmanifest[/bold green] build: {repo_path}")
    console.print(f"Python files scanned: {result.files_scanned}")
    console.print(f"Params: {len(manifest.params)}")
    console.print(f"Endpoints: [bold]{len(manifest.endpoints)}[/bold]")
    for e in manifest.endpoints[:50]:
        console.print(f"  {e.key:<40} {e.trigger.wire_key:<17} {e.location}")
    if len(manifest.endpoints) > 50:
        console.print(f"  … and {len(manifest.endpoints) - 50} more")
    console.print("")
    console.print(f"[bold green]Wrote[/bold green] {result.format} manifest to: {result.output_path}")


@app.command()
def endpoints(
    repo: str = typer.Argument(".", help="Path to the functions project"),
    format: str = typer.Option("table", help="Output format: table|json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """List the endpoints the project registers, without writing a manifest."""
    _setup_logging(verbose)
    repo_path = _project_root(repo)
    config = _load(repo_path)

    try:
        compiled = compile_manifest(repo_path, config)
    except ManifestError as e:
        _fail(e)

    rows = compiled.manifest.endpoints
    if format.lower() == "json":
        payload = {e.key: endpoint_to_wire(e) for e in rows}
        console.print_json(json.dumps(payload))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("KEY")
    table.add_column("TRIGGER", no_wrap=True)
    table.add_column("HANDLER")
    table.add_column("FILE:LINE", no_wrap=True)

    for e in rows:
        table.add_row(e.key, e.trigger.wire_key, e.handler, f"{e.location.rel_path}:{e.location.line}")

    console.print(f"[bold]Endpoints:[/bold] {len(rows)}")
    console.print(table)


@app.command()
def ping() -> None:
    console.print("pong")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
