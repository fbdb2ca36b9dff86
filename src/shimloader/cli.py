"""shimloader command-line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from pprint import pformat
from typing import Annotated, Any, NoReturn

import typer

from . import __version__
from .config import Config, ConfigError, load_config, normalize_root, parse_strategy
from .errors import LoaderError
from .loader import Loader
from .logging import configure_logging
from .paths import is_url
from .types import BareSpecifier
from .watcher import SourceWatcher

app = typer.Typer(help="Load legacy exports/define() modules with dependency retry.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None
    root: str | None = None
    strategy: str | None = None
    verbose: bool = False


@app.callback()
def _shimloader(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to config (env SHIMLOADER_CONFIG or ~/.config/shimloader/config.yaml).",
        ),
    ] = None,
    root: Annotated[
        str | None,
        typer.Option("--root", help="Directory or base URL that relative specifiers start from."),
    ] = None,
    strategy: Annotated[
        str | None,
        typer.Option("--strategy", help="'rerun' (default) or 'suspend'."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Log every dispatch and retry."),
    ] = False,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved, root=root, strategy=strategy, verbose=verbose)


@app.command()
def run(
    ctx: typer.Context,
    specifier: Annotated[str, typer.Argument(help="Module to load, e.g. ./main or a package name.")],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the export value as JSON."),
    ] = False,
    show_cache: Annotated[
        bool,
        typer.Option("--show-cache", help="List every cache entry after loading."),
    ] = False,
) -> None:
    """Load a module and print its export value."""

    config = _load_environment(_state(ctx))
    try:
        value, entries = asyncio.run(_load_once(config, specifier))
    except LoaderError as exc:
        typer.secho(f"Load failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc

    typer.echo(_render(value, as_json))
    if show_cache:
        typer.echo("")
        typer.echo("Cache:")
        for address, state in entries:
            typer.echo(f"  {state:<8} {address}")


@app.command()
def resolve(
    ctx: typer.Context,
    specifier: Annotated[str, typer.Argument(help="Specifier to resolve.")],
    from_address: Annotated[
        str | None,
        typer.Option("--from", help="Address of the requiring module."),
    ] = None,
) -> None:
    """Print the canonical address a specifier resolves to."""

    config = _load_environment(_state(ctx))
    loader = Loader.from_config(config)
    try:
        target = loader.resolve(specifier, from_address)
    except LoaderError as exc:
        typer.secho(f"Cannot resolve: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc
    if isinstance(target, BareSpecifier):
        typer.echo(f"package: {target.name}")
    else:
        typer.echo(target)


@app.command()
def watch(
    ctx: typer.Context,
    specifier: Annotated[str, typer.Argument(help="Module to load on every change.")],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the export value as JSON."),
    ] = False,
) -> None:
    """Load a module, then load it again from scratch whenever a source changes."""

    config = _load_environment(_state(ctx))
    if is_url(config.root):
        typer.secho("watch needs a local root directory.", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)

    changed = threading.Event()
    watcher = SourceWatcher(
        Path(config.root),
        [config.default_extension, Path(config.manifest_name).suffix],
    )

    def _on_change(path: Path) -> None:
        LOGGER.info("Changed: %s", path)
        changed.set()

    watcher.on_change(_on_change)
    watcher.start()
    typer.echo(f"Watching {config.root} (Ctrl+C to stop)")
    try:
        while True:
            changed.clear()
            try:
                value, _ = asyncio.run(_load_once(config, specifier))
            except LoaderError as exc:
                typer.secho(f"Load failed: {exc}", fg=typer.colors.RED, err=True)
            else:
                typer.echo(_render(value, as_json))
            changed.wait()
    except KeyboardInterrupt:  # pragma: no cover - interactive
        typer.echo("Stopped.")
    finally:
        watcher.stop()


@app.command()
def version() -> None:
    """Print the installed version."""

    typer.echo(__version__)


async def _load_once(config: Config, specifier: str) -> tuple[Any, list[tuple[str, str]]]:
    async with Loader.from_config(config) as loader:
        value = await loader.load(specifier)
        entries = [(entry.address, entry.state.value) for entry in loader.cache]
    return value, entries


def _render(value: Any, as_json: bool) -> str:
    if as_json:
        return json.dumps(value, indent=2, sort_keys=True, default=repr)
    return pformat(value)


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_environment(state: CLIState) -> Config:
    try:
        config = load_config(state.config_path)
        if state.root:
            config = replace(config, root=normalize_root(state.root, Path.cwd()))
        if state.strategy:
            config = replace(config, strategy=parse_strategy(state.strategy))
        configure_logging(config.logging, verbose=state.verbose)
    except ConfigError as exc:
        _config_failure(exc)
    return config


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
