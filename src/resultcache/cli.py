"""Command-line interface for the result cache."""

from typing import Annotated, Optional

import typer

from resultcache.backends.database import DatabaseCacheBackend
from resultcache.base import CacheError
from resultcache.config import CacheConfig
from resultcache.encryption.base import EncryptionError

app = typer.Typer(
    name="resultcache",
    help="Maintain the persistent query result cache",
    add_completion=False,
)

UrlOption = Annotated[
    Optional[str],
    typer.Option(
        "--url",
        help="SQLAlchemy connection URL (default: RESULTCACHE_CONNECTION_URL)",
    ),
]
TableOption = Annotated[
    Optional[str],
    typer.Option("--table", help="Cache table name (default: RESULTCACHE_TABLE_NAME)"),
]


def _open_backend(url: Optional[str], table: Optional[str]) -> DatabaseCacheBackend:
    config = CacheConfig.from_env()
    if url:
        config.connection_url = url
    if table:
        config.table_name = table
    try:
        return DatabaseCacheBackend(config)
    except (CacheError, EncryptionError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="init")
def init_cmd(url: UrlOption = None, table: TableOption = None) -> None:
    """Create the cache table and its index."""
    with _open_backend(url, table) as backend:
        typer.echo(f"Cache table '{backend.config.table_name}' is ready")


@app.command(name="purge")
def purge_cmd(
    max_age_seconds: Annotated[
        Optional[float],
        typer.Option(
            "--max-age-seconds",
            help="Delete entries at least this old (default: 90 days)",
        ),
    ] = None,
    url: UrlOption = None,
    table: TableOption = None,
) -> None:
    """Delete old cache entries."""
    if max_age_seconds is not None and max_age_seconds < 0:
        typer.echo("Error: --max-age-seconds must be non-negative", err=True)
        raise typer.Exit(1)

    with _open_backend(url, table) as backend:
        deleted = backend.purge(max_age_seconds)
    typer.echo(f"Purged {deleted} cache entries")


@app.command(name="stats")
def stats_cmd(url: UrlOption = None, table: TableOption = None) -> None:
    """Show the number of cache entries and their total size."""
    with _open_backend(url, table) as backend:
        try:
            stats = backend.store.stats()
        except Exception as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
    typer.echo(f"Entries: {stats['count']}")
    typer.echo(f"Total size: {stats['total_bytes']} bytes")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
