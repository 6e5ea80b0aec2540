"""Streaming ingestion CLI commands: scrape straight into the vector index."""

import asyncio
import json
import sys
import time
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import click
import psutil
from rich.console import Console
from rich.table import Table

from ..core.config import settings
from ..core.sources import load_sources_file
from ..pipelines.context import PipelineContext
from ..pipelines.ingestion.processor import (
    StreamingProcessor,
    process_document_source,
    process_document_sources,
)
from ..pipelines.scraper.base import DocumentSource, ScrapingResult, SourceType
from ..pipelines.storage.vector_index import DELETE_ALL


def _context(**overrides: Any) -> PipelineContext:
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return PipelineContext(settings.model_copy(update=overrides) if overrides else settings)


def _report(result: ScrapingResult) -> bool:
    if not result.success:
        click.echo(f"❌ {result.message}")
        return False
    click.echo("✅ Processing completed!")
    click.echo(f"   Fragments: {result.stats.total_chunks}")
    click.echo(f"   Stored: {result.stats.stored_chunks or 0}")
    if result.stats.total_pages is not None:
        click.echo(f"   Pages: {result.stats.total_pages}")
    click.echo(f"   Time: {result.stats.time_ms / 1000:.1f}s")
    return True


async def _stream_source(
    context: PipelineContext, source: DocumentSource, batch_size: int, interval: float
) -> ScrapingResult:
    processor = StreamingProcessor(
        context.create_index_client(),
        batch_size=batch_size,
        interval=interval,
        scraper_factory=context.create_scraper,
    )
    return await processor.process_source(source)


@click.group()
def stream():
    """Stream documentation sources into the vector index."""
    pass


@stream.command()
@click.option("--url", "-u", required=True, help="Website URL")
@click.option("--name", "-n", default="", help="Source name (defaults to the host name)")
@click.option("--selector", "-s", default="", help="CSS selector for the main content")
@click.option("--batch-size", "-b", default=10, show_default=True, help="Fragments per store batch")
@click.option("--interval", "-i", default=0.2, show_default=True, help="Seconds between batches")
def website(url: str, name: str, selector: str, batch_size: int, interval: float):
    """Scrape a website straight into the vector index."""
    source = DocumentSource(
        name=name or urlparse(url).netloc or url,
        url=url,
        type=SourceType.WEBSITE,
        selector=selector or None,
    )
    click.echo(f"🌐 Streaming website {source.name} ({url})...")
    result = asyncio.run(_stream_source(_context(), source, batch_size, interval))
    if not _report(result):
        sys.exit(1)


@stream.command()
@click.option("--url", "-u", required=True, help="GitHub repository URL")
@click.option("--name", "-n", default="", help="Source name (defaults to owner/repo)")
@click.option("--max-depth", "-d", type=int, default=None, help="Maximum directory depth")
@click.option("--only-dirs", "-f", default=None, help="Only process these directories (comma separated)")
@click.option("--skip-code", is_flag=True, help="Skip source code comment extraction")
@click.option("--limit-files", is_flag=True, help="Cap the number of code files per directory")
@click.option("--chunk-size", "-c", type=int, default=None, help="Fragments per emitted batch")
@click.option("--batch-size", "-b", default=10, show_default=True, help="Fragments per store batch")
@click.option("--interval", "-i", default=0.2, show_default=True, help="Seconds between batches")
def github(
    url: str,
    name: str,
    max_depth: Optional[int],
    only_dirs: Optional[str],
    skip_code: bool,
    limit_files: bool,
    chunk_size: Optional[int],
    batch_size: int,
    interval: float,
):
    """Scrape a GitHub repository straight into the vector index."""
    path = urlparse(url).path.strip("/")
    source = DocumentSource(name=name or path or url, url=url, type=SourceType.REPOSITORY)
    context = _context(
        github_max_depth=max_depth,
        github_only_dirs=only_dirs,
        github_skip_code=True if skip_code else None,
        github_limit_files=True if limit_files else None,
        github_chunk_batch_size=chunk_size,
    )
    click.echo(f"🐙 Streaming repository {source.name} ({url})...")
    result = asyncio.run(_stream_source(context, source, batch_size, interval))
    if not _report(result):
        sys.exit(1)


@stream.command()
@click.option("--source", "-s", "source_file", type=click.Path(exists=True), help="JSON file with one source")
@click.option("--config", "-c", "config_file", type=click.Path(exists=True), help="JSON file with a list of sources")
def process(source_file: Optional[str], config_file: Optional[str]):
    """Stream sources defined in JSON files."""
    if not source_file and not config_file:
        raise click.UsageError("Provide --source or --config")

    context = _context()

    if source_file:
        with open(source_file, "r", encoding="utf-8") as f:
            source = DocumentSource.model_validate(json.load(f))
        click.echo(f"📥 Processing source {source.name}...")
        result = asyncio.run(process_document_source(source, context))
        if not _report(result):
            sys.exit(1)
        return

    sources = load_sources_file(config_file)
    click.echo(f"📥 Processing {len(sources)} sources...")
    summary = asyncio.run(process_document_sources(sources, context))
    for source_name, result in summary["results"].items():
        status = "✅" if result.success else "❌"
        click.echo(f"   {status} {source_name}: {result.stats.stored_chunks or 0} stored")
    click.echo(
        f"✅ {summary['successful']}/{summary['total']} sources succeeded, "
        f"{summary['stored_chunks']} fragments stored"
    )


def _memory_sample(process: psutil.Process) -> Dict[str, float]:
    info = process.memory_info()
    return {"rss_mb": info.rss / (1024 * 1024), "vms_mb": info.vms / (1024 * 1024)}


@stream.command("check-memory")
@click.option("--time", "-t", "duration", default=60.0, show_default=True, help="Monitoring duration in seconds")
@click.option("--interval", "-i", default=5.0, show_default=True, help="Seconds between samples")
def check_memory(duration: float, interval: float):
    """Sample this process's memory usage."""
    process = psutil.Process()
    started = time.monotonic()
    samples = [(0.0, _memory_sample(process))]
    click.echo(f"🧠 Initial RSS: {samples[0][1]['rss_mb']:.1f} MB")

    while time.monotonic() - started + interval <= duration:
        time.sleep(interval)
        elapsed = time.monotonic() - started
        sample = _memory_sample(process)
        samples.append((elapsed, sample))
        click.echo(f"   {elapsed:.0f}s: RSS {sample['rss_mb']:.1f} MB")

    table = Table(title="Memory usage")
    table.add_column("Elapsed (s)", justify="right")
    table.add_column("RSS (MB)", justify="right")
    table.add_column("VMS (MB)", justify="right")
    for elapsed, sample in samples:
        table.add_row(f"{elapsed:.0f}", f"{sample['rss_mb']:.1f}", f"{sample['vms_mb']:.1f}")
    Console().print(table)

    peak = max(sample["rss_mb"] for _, sample in samples)
    click.echo(f"✅ Peak RSS: {peak:.1f} MB over {len(samples)} samples")


@stream.command("clear-vectors")
@click.option("--confirm", is_flag=True, help="Confirm deleting every document from the vector index")
def clear_vectors(confirm: bool):
    """Delete every document from the vector index."""
    if not confirm:
        raise click.UsageError("Refusing to clear the vector index without --confirm")

    async def _run() -> int:
        client = _context().create_index_client()
        try:
            return await client.delete_documents([DELETE_ALL])
        finally:
            await client.close()

    try:
        deleted = asyncio.run(_run())
    except Exception as e:
        raise click.ClickException(f"Failed to clear vector index: {e}")
    click.echo(f"🧹 Cleared vector index, removed {deleted} documents")
