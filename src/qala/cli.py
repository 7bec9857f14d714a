"""CLI for the Qala chat backend: run the server or probe the knowledge base."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import uvicorn

from qala import __version__
from qala.config import ConfigError, QalaConfig, load_config
from qala.core.logging import configure_logging
from qala.core.metrics import init_metrics
from qala.core.telemetry import init_telemetry
from qala.knowledge.base import KnowledgeBase

logger = logging.getLogger(__name__)

_SERVICE_NAME = "qala-chat"


def _load(config_path: Path | None) -> QalaConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Qala: Sorani Kurdish chat server with a knowledge-base fast path."""


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to qala.toml (or a directory containing it)",
)
@click.option("--host", default=None, help="Override the listen host")
@click.option("--port", type=int, default=None, help="Override the listen port")
def serve(config_path: Path | None, host: str | None, port: int | None) -> None:
    """Start the HTTP server."""
    from qala.api.app import create_app

    config = _load(config_path)
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port

    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        app_name=_SERVICE_NAME,
    )
    init_telemetry(_SERVICE_NAME)
    init_metrics(_SERVICE_NAME)

    app = create_app(config)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.server.host,
            port=config.server.port,
            log_level=config.logging.level.lower(),
            log_config=None,
            timeout_graceful_shutdown=5,
        )
    )
    logger.info("Serving on %s:%d", config.server.host, config.server.port)
    server.run()


@cli.command()
@click.argument("text")
def match(text: str) -> None:
    """Show which knowledge entry TEXT resolves to, without calling the LLM."""
    knowledge = KnowledgeBase()
    entry = knowledge.find_matching(text)
    if entry is None:
        click.echo("no match")
        return
    position = knowledge.entries.index(entry)
    click.echo(f"entry {position}: {entry.patterns[0]}")
    click.echo(entry.response)
