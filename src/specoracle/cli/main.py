import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from specoracle.core.embed import get_embedding_config, get_openai_client
from specoracle.core.exceptions import EmbeddingError, SearchError, SpecOracleError
from specoracle.core.ingest import (
    ImportSummary,
    calculate_sha256,
    extract_pdf_text,
    import_specifications,
    load_parseur_documents,
)
from specoracle.core.logging_config import configure_logging
from specoracle.core.retrieve import SpecQuery, SpecRetriever
from specoracle.core.store import PgSpecStore, SpecDocumentInfo
from specoracle.core.synthesize import OpenAICompleter

app = typer.Typer(help="specoracle: highway specification import and search")
console = Console()

# Initialize structured logging
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
)


def print_import_summary(summary: ImportSummary) -> None:
    table = Table(title="Import summary")
    table.add_column("Stage", style="cyan")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    for stage, counts in summary.stage_counts().items():
        table.add_row(stage, str(counts["succeeded"]), str(counts["failed"]))
    console.print(table)


@app.command()
def ingest(
    paths: List[Path] = typer.Argument(..., help="Parseur JSON exports (in page order) or a single PDF"),
    title: str = typer.Option("WVDOH Standard Specifications Roads and Bridges", help="Document title"),
    version_year: int = typer.Option(2023, help="Specification edition year"),
    total_pages: Optional[int] = typer.Option(None, help="Page count of the source document"),
    clean: bool = typer.Option(False, "--clean", help="Delete existing specification data first"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt for --clean"),
):
    """Import a specification document: parse, chunk, embed and store."""
    for path in paths:
        if not path.exists():
            console.print(f"[red]Error:[/] Path {path} does not exist")
            raise typer.Exit(1)

    if clean and not yes and not Confirm.ask("Delete all existing specification data?"):
        raise typer.Exit(1)

    try:
        if len(paths) == 1 and paths[0].suffix.lower() == ".pdf":
            text = extract_pdf_text(paths[0])
            source_hash = calculate_sha256(paths[0])
        else:
            text = load_parseur_documents(paths)
            source_hash = None

        document_info = SpecDocumentInfo(
            title=title,
            version_year=version_year,
            edition=f"{version_year} Edition",
            total_pages=total_pages,
            source_sha256=source_hash,
        )

        config = get_embedding_config()
        with console.status("[bold green]Importing specifications..."):
            summary = import_specifications(
                text,
                store=PgSpecStore(),
                client=get_openai_client(config.request_timeout),
                config=config,
                document_info=document_info,
                clean=clean,
            )

        console.print(f"[green]✅ Import complete![/] Document {summary.document_id}")
        print_import_summary(summary)

    except EmbeddingError as e:
        console.print(f"[red]Embedding failed, nothing was stored:[/] {e}")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error during import:[/] {e}")
        raise typer.Exit(1)


@app.command()
def query(
    text: str = typer.Argument(..., help="Question about the specifications"),
    pay_item: Optional[str] = typer.Option(None, "--pay-item", help="Restrict to a pay item code"),
    section: Optional[List[str]] = typer.Option(None, "--section", help="Restrict to section numbers"),
    max_results: int = typer.Option(5, "--max-results", "-k", help="Maximum chunks to return"),
    no_synthesis: bool = typer.Option(False, "--no-synthesis", help="Return matches without an answer"),
):
    """Search the specifications and optionally synthesize an answer."""
    try:
        config = get_embedding_config()
        client = get_openai_client(config.request_timeout)
        completer = None if no_synthesis else OpenAICompleter(client=client)
        retriever = SpecRetriever(PgSpecStore(), client=client, completer=completer, embedding_config=config)

        try:
            with console.status("[bold green]Searching specifications..."):
                response = retriever.query(SpecQuery(
                    query=text,
                    pay_item_code=pay_item,
                    section_numbers=section or None,
                    max_results=max_results,
                    include_synthesis=not no_synthesis,
                ))
        finally:
            retriever.close()

    except (EmbeddingError, SearchError) as e:
        console.print(f"[red]Service unavailable:[/] {e}")
        raise typer.Exit(1)
    except SpecOracleError as e:
        console.print(f"[red]Invalid query:[/] {e}")
        raise typer.Exit(2)
    except Exception as e:
        console.print(f"[red]Error during query:[/] {e}")
        raise typer.Exit(1)

    if not response.chunks:
        console.print("[yellow]No relevant specification content found.[/]")
        return

    if response.answer:
        console.print("[bold]Answer:[/]")
        console.print(response.answer)
        console.print()

    table = Table(title=f"Matches ({response.query_time_ms}ms)")
    table.add_column("#", justify="right")
    table.add_column("Section", style="cyan")
    table.add_column("Type")
    table.add_column("Similarity", justify="right", style="green")
    table.add_column("Excerpt")
    for i, chunk in enumerate(response.chunks, 1):
        excerpt = chunk.content[:120].replace("\n", " ")
        table.add_row(str(i), chunk.section_context, chunk.chunk_type or "", f"{chunk.similarity:.3f}", excerpt)
    console.print(table)

    if response.pay_item_info:
        info = response.pay_item_info
        console.print(f"[bold]Pay item {info['item_number']}:[/] {info.get('item_description')} ({info.get('unit')})")


@app.command()
def stats():
    """Show specification index statistics."""
    try:
        stats = PgSpecStore().get_stats()

        console.print("[bold]📊 Specification Index:[/]")
        console.print(f"  Documents: {stats['spec_documents']}")
        console.print(f"  Sections: {stats['spec_sections']}")
        console.print(f"  Subsections: {stats['spec_subsections']}")
        console.print(f"  Chunks: {stats['spec_chunks']}")
        console.print(f"  Pay item links: {stats['spec_item_links']}")

        if stats['models_used']:
            console.print()
            console.print("[bold]🤖 Embedding Models:[/]")
            for model, count in stats['models_used'].items():
                console.print(f"  {model}: {count} chunks")

    except Exception as e:
        console.print(f"[red]Error getting stats:[/] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
