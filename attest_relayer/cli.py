"""
CLI entry point for the attestation relayer.
"""

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Optional

import structlog
import typer

from .chain import Web3ChainClient
from .config import Settings, load_settings
from .extractor import EventExtractor
from .models import BlockRange
from .relayer import Relayer
from .request_builder import build_request, split_request
from .store import create_store

app = typer.Typer(
    name="attest-relayer",
    help="Watch contract events, prove their receipts and submit attestations",
    add_completion=False,
)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog for console or JSON output."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
    )


def _settings(config_path: Optional[Path]) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.log_level, settings.log_json)
    return settings


async def _serve(relayer: Relayer, settings: Settings) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relayer.stop)

    if settings.http_port is None:
        try:
            await relayer.run()
        finally:
            await relayer.chain.close()
        return

    from .api import create_server

    server = create_server(relayer, settings.http_host, settings.http_port)
    status_task = asyncio.create_task(server.serve())
    status_task.add_done_callback(lambda _: relayer.stop())
    try:
        await relayer.run()
    finally:
        server.should_exit = True
        await status_task
        await relayer.chain.close()


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Run a single pass and exit (useful for testing)",
    ),
) -> None:
    """
    Start the relayer: scan, prove and submit on every poll interval.
    """
    settings = _settings(config_path)
    relayer = Relayer(settings)

    if once:
        typer.echo("Running a single pass...")

        async def _once() -> None:
            try:
                task = await relayer.tick()
                if task is None:
                    return
                report = await task
                typer.echo(json.dumps(report.to_dict(), indent=2))
            finally:
                await relayer.chain.close()

        asyncio.run(_once())
        relayer.store.close()
        return

    typer.echo("Running in continuous mode. Press Ctrl+C to stop.")
    try:
        asyncio.run(_serve(relayer, settings))
    finally:
        relayer.store.close()


@app.command()
def scan(
    from_block: int = typer.Argument(..., help="First block (inclusive)"),
    to_block: int = typer.Argument(..., help="Last block (inclusive)"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
    output_file: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write request JSON to file"
    ),
) -> None:
    """
    Extract matching events and print the attestation request, without proving.

    Example:
        attest-relayer scan 21348491 21348493
    """
    settings = _settings(config_path)

    async def _scan() -> None:
        try:
            block_range = BlockRange(from_block, to_block)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

        chain = Web3ChainClient(settings.chain_config())
        extractor = EventExtractor(
            chain,
            contract_address=settings.contract_address,
            event_topic=settings.event_topic,
            field_index=settings.field_index,
            is_topic=settings.field_is_topic,
            concurrency=settings.receipt_concurrency,
        )
        try:
            result = await extractor.extract(block_range)
        finally:
            await chain.close()

        typer.echo(f"Range:        {block_range}")
        typer.echo(f"Logs:         {result.log_count}")
        typer.echo(f"Transactions: {len(result.groups)}")
        typer.echo(f"Entries:      {result.entry_count}")
        for failure in result.failures:
            typer.echo(f"  Skipped {failure.tx_hash}: {failure.error}", err=True)

        if not result.groups:
            typer.echo("\nNothing to prove.")
            return

        request = build_request(result.groups)
        chunks = split_request(request, settings.max_receipts_per_request)
        body = json.dumps([chunk.to_dict() for chunk in chunks], indent=2)
        if output_file:
            output_file.write_text(body)
            typer.echo(f"\n{len(chunks)} request(s) saved to {output_file}")
        else:
            typer.echo(f"\n{len(chunks)} request(s):")
            typer.echo(body)

    asyncio.run(_scan())


@app.command()
def cursor(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
    submissions: bool = typer.Option(
        False, "--submissions", "-s", help="Also list recorded submissions"
    ),
) -> None:
    """
    Show the persisted cursor.
    """
    settings = _settings(config_path)
    store = create_store(settings.database_url)
    try:
        height = store.load_cursor()
        if height is None:
            typer.echo(f"No cursor stored; scanning would start at block {settings.start_block}")
        else:
            typer.echo(f"Cursor: {height} (next pass starts at {height + 1})")

        if submissions:
            for record in store.get_submissions():
                typer.echo(
                    f"  {record.query_key} [{record.from_block},{record.to_block}] "
                    f"entries={record.entry_count} status={record.status}"
                )
    finally:
        store.close()


@app.command()
def set_cursor(
    height: int = typer.Argument(..., help="Last block to treat as processed"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Overwrite the persisted cursor (e.g. to rescan or skip a range).
    """
    settings = _settings(config_path)
    if not settings.database_url:
        typer.echo("Error: DATABASE_URL is empty; there is no persisted cursor", err=True)
        raise typer.Exit(1)
    if height < -1:
        typer.echo("Error: height must be >= -1", err=True)
        raise typer.Exit(1)
    if not yes:
        typer.confirm(f"Set cursor to {height}?", abort=True)

    store = create_store(settings.database_url)
    try:
        store.save_cursor(height)
    finally:
        store.close()
    typer.echo(f"Cursor set to {height}")


@app.command()
def version() -> None:
    """Show the relayer version."""
    from attest_relayer import __version__
    typer.echo(f"attest-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
