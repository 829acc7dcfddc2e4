"""Groundwave command line."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from groundwave.config import settings
from groundwave.errors import GroundwaveError

ACCENT = "#80ffea"
SUCCESS_GREEN = "#50fa7b"
ERROR_RED = "#ff6363"

console = Console()
app = typer.Typer(
    name="groundwave",
    help="Groundwave - contacts, zettelkasten, logbook and WhatsApp",
    add_completion=False,
    no_args_is_help=True,
)
zk_app = typer.Typer(help="Zettelkasten maintenance", no_args_is_help=True)
adif_app = typer.Typer(help="ADIF logbook import and export", no_args_is_help=True)
invite_app = typer.Typer(help="User invites", no_args_is_help=True)
app.add_typer(zk_app, name="zk")
app.add_typer(adif_app, name="adif")
app.add_typer(invite_app, name="invite")


def success(message: str) -> None:
    console.print(f"[{SUCCESS_GREEN}]✓[/{SUCCESS_GREEN}] {message}")


def error(message: str) -> None:
    console.print(f"[{ERROR_RED}]✗[/{ERROR_RED}] {message}")


def _setup_logging() -> None:
    from groundwave.logging import configure_logging

    configure_logging(level=settings.log_level, json_output=settings.is_production)


def _run(coro) -> None:
    """Run a database command, turning Groundwave errors into exit code 1."""
    from groundwave.db.connection import close_db

    async def runner() -> None:
        try:
            await coro
        finally:
            await close_db()

    try:
        asyncio.run(runner())
    except GroundwaveError as e:
        error(e.message)
        raise typer.Exit(code=1) from e


@app.command()
def web(
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to listen on")] = None,
    dev: Annotated[bool, typer.Option("--dev", help="Force development mode")] = False,
) -> None:
    """Start the web server."""
    from groundwave.main import run_server

    if dev:
        settings.groundwave_env = "development"
    try:
        run_server(port=port)
    except GroundwaveError as e:
        error(e.message)
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        console.print(f"\n[{ACCENT}]Shutting down...[/{ACCENT}]")


@zk_app.command("import")
def zk_import(
    directory: Annotated[
        Path, typer.Argument(help="Directory of .org notes", exists=True, file_okay=False)
    ],
) -> None:
    """Ingest every org note below DIRECTORY and rebuild the link tables."""
    _setup_logging()

    async def run() -> None:
        from groundwave.db.connection import get_session, init_db
        from groundwave.zettel.index import ZettelIndex

        await init_db()
        async with get_session() as session:
            index = ZettelIndex(session)
            result = await index.ingest_directory(directory)
            graph = await index.rebuild_all()

        table = Table(border_style=ACCENT)
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Ingested", str(result.ingested))
        table.add_row("Failed", str(result.failed))
        table.add_row("Linked notes", str(graph.processed))
        console.print(table)
        success("Zettelkasten import complete")

    _run(run())


@adif_app.command("import")
def adif_import(
    path: Annotated[Path, typer.Argument(help="ADIF file", exists=True, dir_okay=False)],
) -> None:
    """Store the QSOs of an ADIF file, skipping ones already logged."""
    _setup_logging()

    async def run() -> None:
        from groundwave.adif import ADIFParser, LogbookManager
        from groundwave.db.connection import get_session, init_db

        parser = ADIFParser()
        with path.open("rb") as f:
            parser.parse_file(f)

        await init_db()
        async with get_session() as session:
            result = await LogbookManager(session).import_qsos(parser.qsos)

        success(
            f"Imported {result.imported} QSO(s), {result.duplicates} duplicate(s), "
            f"{parser.stats.skipped} malformed record(s) skipped"
        )

    _run(run())


@adif_app.command("export")
def adif_export(
    path: Annotated[Path, typer.Argument(help="Output ADIF file")],
) -> None:
    """Write the whole logbook as ADIF."""
    _setup_logging()

    async def run() -> None:
        from groundwave.adif import ADIFExporter, LogbookManager
        from groundwave.db.connection import get_session

        async with get_session() as session:
            qsos = await LogbookManager(session).list_qsos()
        with path.open("w", encoding="utf-8") as f:
            count = ADIFExporter().write(qsos, f)
        success(f"Exported {count} QSO(s) to {path}")

    _run(run())


@invite_app.command("create")
def invite_create(
    name: Annotated[str | None, typer.Argument(help="Display name for the new user")] = None,
    admin: Annotated[bool, typer.Option("--admin", help="Invite an administrator")] = False,
) -> None:
    """Create an invite and print its setup link."""
    _setup_logging()

    async def run() -> None:
        from groundwave.auth.invites import InviteManager, invite_setup_url
        from groundwave.db.connection import get_session
        from groundwave.db.models import UserRole

        async with get_session() as session:
            invite = await InviteManager(session).create(
                created_by=None,
                display_name=name,
                role=UserRole.ADMIN if admin else UserRole.MEMBER,
            )
        success("Invite created")
        console.print(f"[{ACCENT}]{invite_setup_url(invite.token)}[/{ACCENT}]")

    _run(run())


@app.command("gc-sessions")
def gc_sessions() -> None:
    """Delete browser sessions past their absolute expiry."""
    _setup_logging()

    async def run() -> None:
        from groundwave.auth.sessions import WebSessionManager
        from groundwave.db.connection import get_session

        async with get_session() as session:
            count = await WebSessionManager(session).gc()
        success(f"Removed {count} expired session(s)")

    _run(run())


if __name__ == "__main__":
    app()
