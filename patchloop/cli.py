"""CLI entrypoint for patchloop."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click

from patchloop.core.config import AppConfig, load_config
from patchloop.core.exceptions import ConfigError, LLMError, ToolError
from patchloop.core.factory import ComponentFactory


def _setup_logging(config: Optional[AppConfig], verbose: bool = False) -> None:
    """Apply logging configuration (level/format plus debug and quiet flags)."""
    if config is None:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        debug = quiet = False
    else:
        level_name = config.logging.level
        fmt = config.logging.format
        debug = config.logging.debug
        quiet = config.logging.quiet

    if verbose or debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr, force=True)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


@click.command()
@click.option(
    "--plan-only",
    is_flag=True,
    default=False,
    help="Stop after writing the plan file.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    required=False,
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml (and <env>.yaml overlays).",
)
@click.option("--env", required=False, default=None, help="Optional config overlay environment.")
@click.option(
    "--workspace",
    "workspace_dir",
    required=False,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Working tree to modify.",
)
def cli(
    plan_only: bool,
    verbose: bool,
    config_dir: Optional[Path],
    env: Optional[str],
    workspace_dir: Path,
) -> None:
    """Plan, edit, validate and evaluate a working tree until it converges."""
    try:
        config = load_config(config_dir=config_dir, env=env)
    except ConfigError as exc:
        _setup_logging(None, verbose)
        raise click.ClickException(str(exc)) from exc
    _setup_logging(config, verbose)

    try:
        bundle = ComponentFactory.create(
            config_dir=config_dir,
            workspace_dir=workspace_dir,
            environ=os.environ,
            config=config,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        bundle.workspace.ensure_branch()
        state = bundle.controller.run(plan_only=plan_only)
    except (LLMError, ToolError) as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc
    finally:
        bundle.close()

    if state.stop_reason == "plan_only":
        click.echo(f"Plan saved to {config.loop.plan_path} (model: {config.models.plan})")
        return
    click.echo(f"patchloop finished. score={state.score} target={state.target} loops={state.loop}")


def main() -> None:
    """Entry point used by the `patchloop` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path.cwd() / ".env")
    cli()


if __name__ == "__main__":
    main()
