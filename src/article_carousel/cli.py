"""Command-line interface for Article Carousel."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import get_settings
from .content.models import (
    Article,
    CarouselGenerationOptions,
    CarouselPage,
    SlideRegenerationOptions,
    StylePreset,
)
from .content.orchestrator import CarouselOrchestrator
from .exceptions import CarouselError
from .persistence.store import JsonCarouselStore
from .services.loader import decode_data_uri

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="article-carousel",
    help="Turn long-form articles into image carousels with a PDF",
    add_completion=False,
)

console = Console()


def setup_logging(log_dir: Path | None = None) -> None:
    """Configure logging for CLI.

    - Suppresses console output from libraries
    - Sets up file logging for AI calls and the carousel pipeline
    """
    log_dir = log_dir or get_settings().log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    # Remove any default console handlers from root logger
    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(logging.CRITICAL)

    # Suppress loggers that might print to console
    for logger_name in ["httpx", "httpcore", "urllib3", "asyncio"]:
        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.WARNING)
        logger.propagate = False

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    files = {
        "ai_calls": "ai_calls.log",
        "carousel": "carousel.log",
        "render": "carousel.log",
        "storage": "carousel.log",
    }
    handlers: dict[str, logging.FileHandler] = {}
    for logger_name, filename in files.items():
        if filename not in handlers:
            handler = logging.FileHandler(log_dir / filename, encoding="utf-8")
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(formatter)
            handlers[filename] = handler

        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.handlers = [handlers[filename]]


@app.callback()
def main_callback() -> None:
    setup_logging()


def _orchestrator() -> CarouselOrchestrator:
    return CarouselOrchestrator()


def _pages_table(pages: list[CarouselPage], title: str = "Slides") -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Type", style="magenta")
    table.add_column("Headline", style="white")
    table.add_column("Caption", style="dim")
    table.add_column("Image", style="green")
    table.add_column("Versions", justify="right")
    table.add_column("Error", style="yellow")

    for page in pages:
        image = page.image_url or "[red]none[/red]"
        if image.startswith("data:"):
            image = "(inline)"
        table.add_row(
            str(page.page_number),
            page.slide_type.value,
            page.headline_text,
            page.caption or "",
            image[:60],
            str(page.version_count),
            page.generation_error or "",
        )
    return table


def _write_pdf(pdf_url: str, output: Path) -> None:
    if pdf_url.startswith("data:"):
        data, _ = decode_data_uri(pdf_url)
        output.write_bytes(data)
        console.print(f"[green]PDF saved to {output}[/green]")
    else:
        console.print(f"[yellow]PDF is stored remotely: {pdf_url}[/yellow]")


@app.command()
def generate(
    article_id: str = typer.Argument(..., help="Article to build a carousel for"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="T2I provider (fal, replicate, openai)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="T2I model override"),
    style: Optional[StylePreset] = typer.Option(
        None, "--style", "-s", help="Style preset (defaults to CAROUSEL_DEFAULT_STYLE_PRESET)",
    ),
    skip_pdf: bool = typer.Option(False, "--skip-pdf", help="Don't assemble the PDF"),
    force: bool = typer.Option(False, "--force", "-f", help="Regenerate even if a carousel exists"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the PDF to this path"),
):
    """Generate the carousel for an article."""
    options = CarouselGenerationOptions(
        provider=provider,
        model=model,
        style_preset=style,
        skip_pdf=skip_pdf,
        force_regenerate=force,
    )

    with console.status(f"Generating carousel for {article_id}..."):
        result = asyncio.run(_orchestrator().generate_carousel(article_id, options))

    if not result.success:
        console.print(Panel(
            f"[red]{result.error}[/red]\ncode: {result.error_code}",
            title="Generation failed",
            border_style="red",
        ))
        if result.pages:
            console.print(_pages_table(result.pages))
        raise typer.Exit(1)

    console.print(Panel(
        f"Carousel: [cyan]{result.carousel_id}[/cyan]\n"
        f"Provider: {result.provider or '-'}\n"
        f"Cached: {'yes' if result.cached else 'no'}\n"
        f"PDF: {'yes' if result.pdf_url else 'no'}\n"
        f"Notes: {result.error or '-'}",
        title="Carousel ready",
        border_style="green",
    ))
    console.print(_pages_table(result.pages))

    if output and result.pdf_url:
        _write_pdf(result.pdf_url, output)


@app.command()
def status(
    article_id: str = typer.Argument(..., help="Article ID"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the PDF to this path"),
):
    """Show the carousel state for an article."""
    result = asyncio.run(_orchestrator().get_carousel_status(article_id))

    if not result.exists:
        console.print(f"[yellow]No carousel for article {article_id}[/yellow]")
        raise typer.Exit(1)

    console.print(Panel(
        f"Carousel: [cyan]{result.id}[/cyan]\n"
        f"Pages: {result.page_count}\n"
        f"Generated: {result.generated_at or '-'}\n"
        f"Provider: {result.provider or '-'}\n"
        f"PDF: {'yes' if result.pdf_url else 'no'}\n"
        f"Notes: {result.error or '-'}",
        title=f"Article {article_id}",
    ))
    console.print(_pages_table(result.pages))

    if output and result.pdf_url:
        _write_pdf(result.pdf_url, output)


@app.command()
def regenerate(
    article_id: str = typer.Argument(..., help="Article ID"),
    slide: int = typer.Argument(..., help="Slide number (1-based)"),
    prompt: Optional[str] = typer.Option(None, "--prompt", help="Custom background prompt"),
    regenerate_prompt: bool = typer.Option(False, "--regenerate-prompt", help="Ask the LLM for a new prompt"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="T2I provider"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="T2I model override"),
):
    """Regenerate one slide as a new version."""
    options = SlideRegenerationOptions(
        provider=provider,
        model=model,
        custom_prompt=prompt,
        regenerate_prompt=regenerate_prompt,
    )

    try:
        with console.status(f"Regenerating slide {slide}..."):
            result = asyncio.run(_orchestrator().regenerate_carousel_slide(article_id, slide, options))
    except CarouselError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not result.success:
        console.print(f"[red]Slide {slide} failed: {result.error}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]Slide {slide} is now version {result.version.version_number}[/green]"
        + (f" [yellow]({result.error})[/yellow]" if result.error else "")
    )
    console.print(_pages_table(result.pages))


@app.command()
def versions(
    article_id: str = typer.Argument(..., help="Article ID"),
    slide: int = typer.Argument(..., help="Slide number (1-based)"),
):
    """List the versions of a slide."""
    orchestrator = _orchestrator()

    async def load():
        carousel = await orchestrator.get_carousel_status(article_id)
        if not carousel.exists:
            return None
        return await orchestrator.get_slide_versions(carousel.id, slide)

    slide_versions = asyncio.run(load())
    if slide_versions is None:
        console.print(f"[yellow]No carousel for article {article_id}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Slide {slide} versions", box=box.ROUNDED)
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Active")
    table.add_column("Headline")
    table.add_column("Generated")
    table.add_column("Error", style="yellow")

    for version in slide_versions:
        table.add_row(
            str(version.version_number),
            version.id,
            "[green]yes[/green]" if version.is_active else "",
            version.headline_text,
            str(version.generated_at or "-"),
            version.generation_error or "",
        )
    console.print(table)


@app.command()
def activate(
    article_id: str = typer.Argument(..., help="Article ID"),
    slide: int = typer.Argument(..., help="Slide number (1-based)"),
    version_id: str = typer.Argument(..., help="Version ID to activate"),
):
    """Make a stored version the active one for its slide."""
    orchestrator = _orchestrator()

    async def run():
        carousel = await orchestrator.get_carousel_status(article_id)
        if not carousel.exists:
            return None
        return await orchestrator.activate_slide_version(carousel.id, slide, version_id)

    try:
        result = asyncio.run(run())
    except CarouselError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if result is None:
        console.print(f"[yellow]No carousel for article {article_id}[/yellow]")
        raise typer.Exit(1)

    console.print(
        f"[green]Slide {slide} now shows version {result.activated_version.version_number}[/green]"
    )
    console.print(_pages_table(result.pages))


@app.command()
def delete(
    article_id: str = typer.Argument(..., help="Article ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
):
    """Delete an article's carousel and all slide versions."""
    if not yes:
        typer.confirm(f"Delete the carousel for {article_id}?", abort=True)

    deleted = asyncio.run(_orchestrator().delete_carousel(article_id))
    if deleted:
        console.print(f"[green]Deleted carousel for {article_id}[/green]")
    else:
        console.print(f"[yellow]No carousel for article {article_id}[/yellow]")


@app.command(name="import-article")
def import_article(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Article JSON file"),
):
    """Import an article from a JSON file into the store."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    article = Article.model_validate(data)
    store = JsonCarouselStore(get_settings().data_dir)
    asyncio.run(store.save_article(article))

    console.print(
        f"[green]Imported article {article.id}[/green] "
        f"({len(article.sections)} sections, type: {article.article_type})"
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
