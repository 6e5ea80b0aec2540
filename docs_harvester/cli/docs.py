"""Document source management CLI commands."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..core.config import settings
from ..pipelines.context import PipelineContext
from ..pipelines.manager import DocumentManager
from ..pipelines.scraper.base import DiagnosticStatus, DocumentSource, FileType, SourceType
from ..pipelines.scraper.repository import RepositoryScraper

SETUP_SUBDIRECTORIES = ["whitepaper", "rfcs", "specs", "tutorials", "references"]

SETUP_README = """# Local documentation

Files placed here are ingested with `docs-harvester docs add-dir`.

Supported formats: Markdown (.md, .markdown), text (.txt, .rst, .html,
.json, .csv) and PDF.

- whitepaper/  Whitepapers and core concepts
- rfcs/        RFC documents
- specs/       Technical specifications
- tutorials/   Tutorials and guides
- references/  Reference material

Subdirectories are processed recursively and large files are split into
fragments automatically.
"""


def _manager() -> DocumentManager:
    return DocumentManager(PipelineContext(settings))


@click.group()
def docs():
    """Document fetching, caching and diagnostics commands."""
    pass


@docs.command()
@click.option("--source", "source_name", help="Fetch only the source with this name or URL")
@click.option("--store", is_flag=True, help="Also store fragments in the vector index")
@click.option("--no-optimize", is_flag=True, help="Skip fragment merging and deduplication")
def fetch(source_name: Optional[str], store: bool, no_optimize: bool):
    """Fetch configured documentation sources into the local cache."""
    click.echo("🔍 Fetching documentation sources...")
    optimize = False if no_optimize else None

    async def _run() -> bool:
        manager = _manager()
        try:
            if source_name:
                result = await manager.fetch_single_source(source_name, optimize=optimize, store=store)
                if not result.success:
                    click.echo(f"❌ {result.message}")
                    return False
                click.echo(f"✅ {source_name}: {result.stats.total_chunks} fragments")
                if result.stats.stored_chunks is not None:
                    click.echo(f"   Stored: {result.stats.stored_chunks}")
                return True

            summary = await manager.fetch_all_sources(optimize=optimize, store=store)
            for name, result in summary["results"].items():
                if result.success:
                    click.echo(f"   ✅ {name}: {result.stats.total_chunks} fragments")
                else:
                    click.echo(f"   ❌ {name}: {result.message}")
            for name in summary["skipped"]:
                click.echo(f"   ⏭️  {name}: disabled")
            click.echo(
                f"✅ Fetched {summary['successful']} sources, {summary['failed']} failed, "
                f"{summary['total_chunks']} fragments total"
            )
            return True
        finally:
            await manager.close()

    if not asyncio.run(_run()):
        sys.exit(1)


@docs.command()
@click.option("--include-index", is_flag=True, help="Also delete every document from the vector index")
def clean(include_index: bool):
    """Clear the local fragment cache."""

    async def _run():
        manager = _manager()
        try:
            result = await manager.clear_cache(include_index=include_index)
        finally:
            await manager.close()
        click.echo(f"🧹 Cleared {result['chunks']} fragments ({result['files']} cache files)")
        if include_index:
            click.echo(f"   Removed {result['index_documents']} documents from the vector index")

    asyncio.run(_run())


@docs.command()
def diagnose():
    """Check cached fragment coverage and quality."""

    async def _run():
        manager = _manager()
        diagnostic = await manager.run_diagnostics()
        console = Console()

        icon = {
            DiagnosticStatus.OK: "✅",
            DiagnosticStatus.WARNING: "⚠️ ",
            DiagnosticStatus.ERROR: "❌",
        }[diagnostic.status]
        click.echo(f"{icon} {diagnostic.status.value.upper()}: {diagnostic.message}")

        by_source = diagnostic.stats.get("by_source", {})
        if by_source:
            table = Table(title="Fragments by source")
            table.add_column("Source", no_wrap=True)
            table.add_column("Fragments", justify="right")
            for name, count in sorted(by_source.items()):
                table.add_row(name, str(count))
            console.print(table)

        for issue in diagnostic.issues:
            click.echo(f"   • {issue}")

    asyncio.run(_run())


@docs.command()
def stats():
    """Show fragment cache statistics."""

    async def _run():
        manager = _manager()
        await manager.initialize()
        data = manager.get_stats()
        console = Console()

        click.echo(f"📊 {data['total_chunks']} fragments cached in {data['cache_dir']}")
        click.echo(
            f"   Sources: {data['enabled_sources']}/{data['configured_sources']} enabled, "
            f"{data['cached_sources']} cached"
        )

        table = Table(title="Fragments by source")
        table.add_column("Source", no_wrap=True)
        table.add_column("Fragments", justify="right")
        for name, count in sorted(data["by_source"].items()):
            table.add_row(name, str(count))
        console.print(table)

        table = Table(title="Fragments by category")
        table.add_column("Category", no_wrap=True)
        table.add_column("Fragments", justify="right")
        for category, count in sorted(data["by_category"].items()):
            table.add_row(category, str(count))
        console.print(table)

    asyncio.run(_run())


@docs.command("add-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.argument("name")
@click.argument(
    "file_type",
    required=False,
    type=click.Choice([t.value for t in FileType if t != FileType.UNKNOWN]),
)
def add_file(path: str, name: str, file_type: Optional[str]):
    """Add a single local file as a document source and fetch it."""
    file_path = Path(path).resolve()

    async def _run() -> bool:
        manager = _manager()
        source = DocumentSource(
            name=name,
            url=file_path.as_uri(),
            type=SourceType.FILE,
            file_path=str(file_path),
            file_type=FileType(file_type) if file_type else None,
        )
        manager.add_document_source(source)
        result = await manager.fetch_single_source(source)
        if not result.success:
            click.echo(f"❌ {result.message}")
            return False
        click.echo(f"✅ Added {file_path.name} as '{name}': {result.stats.total_chunks} fragments")
        return True

    if not asyncio.run(_run()):
        sys.exit(1)


@docs.command("add-dir")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.argument("prefix", required=False)
@click.argument("recursive", required=False, default=True, type=click.BOOL)
def add_dir(path: str, prefix: Optional[str], recursive: bool):
    """Add every supported file under a local directory."""
    directory = Path(path).resolve()
    name = prefix or directory.name

    async def _run():
        manager = _manager()
        chunks = await manager.add_local_directory(directory, name, recursive=recursive)
        click.echo(f"✅ Added {len(chunks)} fragments from {directory} as '{name}'")

    asyncio.run(_run())


@docs.command("github-status")
def github_status():
    """Show the GitHub API rate limit status."""

    async def _run():
        resources = await RepositoryScraper(settings).get_rate_limit_status()
        console = Console()
        table = Table(title="GitHub API rate limits")
        table.add_column("Resource", no_wrap=True)
        table.add_column("Limit", justify="right")
        table.add_column("Remaining", justify="right")
        table.add_column("Used", justify="right")
        table.add_column("Reset", no_wrap=True)
        for name, info in resources.items():
            table.add_row(
                name,
                str(info.get("limit", "-")),
                str(info.get("remaining", "-")),
                str(info.get("used", "-")),
                str(info.get("reset", "-")),
            )
        console.print(table)
        if not settings.github_token:
            click.echo("⚠️  No GITHUB_TOKEN configured; unauthenticated limits apply")

    try:
        asyncio.run(_run())
    except Exception as e:
        raise click.ClickException(f"Could not read GitHub rate limits: {e}")


@docs.command()
@click.argument("text")
@click.option("--limit", "-l", default=None, type=int, help="Maximum number of results")
@click.option("--threshold", "-t", default=None, type=float, help="Minimum similarity score")
@click.option("--source", "source_name", help="Only return fragments from this source")
@click.option("--category", help="Only return fragments in this category")
def query(text: str, limit: Optional[int], threshold: Optional[float], source_name, category):
    """Run a similarity query against the vector index."""
    filters = {}
    if source_name:
        filters["source"] = source_name
    if category:
        filters["category"] = category

    async def _run():
        manager = _manager()
        try:
            return await manager.query_documents(
                text, max_results=limit, similarity_threshold=threshold, filters=filters or None
            )
        finally:
            await manager.close()

    try:
        results = asyncio.run(_run())
    except Exception as e:
        raise click.ClickException(f"Query failed: {e}")

    if not results:
        click.echo("No matching fragments found.")
        return

    click.echo(f"🔎 {len(results)} results for: {text}")
    for i, (chunk, score) in enumerate(results, 1):
        click.echo(f"\n{i}. {chunk.title} ({score:.3f})")
        click.echo(f"   Source: {chunk.source} [{chunk.category}]")
        click.echo(f"   URL: {chunk.url}")
        preview = chunk.content[:200].replace("\n", " ")
        click.echo(f"   {preview}{'...' if len(chunk.content) > 200 else ''}")


@docs.command()
@click.option("--root", default="./data/docs", help="Directory for local documentation files")
def setup(root: str):
    """Create the local documentation tree."""
    root_path = Path(root)
    root_path.mkdir(parents=True, exist_ok=True)
    click.echo(f"📁 Documentation directory: {root_path}")

    for name in SETUP_SUBDIRECTORIES:
        subdir = root_path / name
        if not subdir.exists():
            subdir.mkdir(parents=True)
            click.echo(f"   Created {subdir}")

    readme = root_path / "README.md"
    if not readme.exists():
        readme.write_text(SETUP_README, encoding="utf-8")
        click.echo(f"   Created {readme}")

    Path(settings.cache_dir).mkdir(parents=True, exist_ok=True)
    click.echo(f"✅ Setup complete. Add files to {root_path} and run: docs-harvester docs add-dir {root_path}")
