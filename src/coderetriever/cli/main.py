"""
Smart Code Retriever CLI

Command-line interface for indexing, searching and questioning a
codebase.  The index is rebuilt in memory on every invocation.

Usage::

    coderetriever stats ./src                        # Index statistics
    coderetriever search ./src "user repository"     # Hybrid search
    coderetriever ask ./src "How are users stored?"  # Retrieval-augmented answer
    coderetriever shell ./src                        # Interactive session
    coderetriever dump ./src fragments.json          # Export parsed fragments
    coderetriever mcp                                # Start the MCP server

SOURCE may be a directory of Python files or a ``.json`` fragment dump.
"""

import logging
import time
from pathlib import Path
from typing import List

import click

from coderetriever.client import CodeRetriever
from coderetriever.core.config import RetrieverConfig
from coderetriever.core.engine import CodeFragment
from coderetriever.core.search import ResultFormatter
from coderetriever.exceptions import CodeRetrieverError, ConfigError, ProviderError, RetrievalError


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool, config: RetrieverConfig | None = None) -> None:
    """Set up logging for the CLI session."""
    cfg = config or RetrieverConfig.from_env()
    level = logging.DEBUG if verbose else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=cfg.log_format)
    # Suppress noisy HTTP loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Top-level group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(package_name="smart-code-retriever")
@click.option(
    "--provider",
    type=click.Choice(["gemini", "openai", "anthropic"]),
    default=None,
    envvar="CODERETRIEVER_LLM_PROVIDER",
    help="LLM provider for 'ask' (default: $CODERETRIEVER_LLM_PROVIDER or 'gemini').",
)
@click.pass_context
def cli(ctx: click.Context, provider: str | None):
    """Smart Code Retriever — hybrid keyword, dependency and semantic code search."""
    ctx.ensure_object(dict)
    ctx.obj["provider"] = provider


_source_argument = click.argument(
    "source", type=click.Path(exists=True, path_type=Path),
)
_embeddings_option = click.option(
    "--embeddings/--no-embeddings", default=None,
    help="Enable semantic ranking (default: $CODERETRIEVER_USE_EMBEDDINGS).",
)
_verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")


# ---------------------------------------------------------------------------
# coderetriever stats
# ---------------------------------------------------------------------------

@cli.command()
@_source_argument
@_embeddings_option
@_verbose_option
@click.pass_context
def stats(ctx: click.Context, source: Path, embeddings: bool | None, verbose: bool):
    """Index SOURCE and show fragment statistics."""
    client = _build_client(ctx, embeddings, verbose)
    _build_index(client, source)
    s = client.stats(source)

    click.echo("─" * 50)
    click.echo("  CODE RETRIEVER — Index Statistics")
    click.echo("─" * 50)
    click.echo(f"  Source          : {s['root_dir']}")
    click.echo(f"  Strategy        : {s['strategy']}")
    click.echo()
    if s["files_scanned"]:
        click.echo(f"  Files scanned   {s['files_scanned']:>8,}")
        click.echo(f"  Files parsed    {s['files_parsed']:>8,}")
        if s["parse_errors"]:
            click.echo(f"  Parse errors    {s['parse_errors']:>8,}")
    for kind, count in s["fragments_by_kind"].items():
        click.echo(f"  {kind.title() + 's':<15} {count:>8,}")
    click.echo(f"  Total           {s['fragments_total']:>8,}")
    click.echo(f"  Packages        {s['packages']:>8,}")
    if s["embeddings_enabled"]:
        click.echo(f"  Embedded        {s['fragments_embedded']:>8,}")
    click.echo("─" * 50)


# ---------------------------------------------------------------------------
# coderetriever search
# ---------------------------------------------------------------------------

@cli.command()
@_source_argument
@click.argument("query")
@click.option("-n", "--max-results", type=int, default=None,
              help="Maximum number of results.")
@click.option("-f", "--format", "fmt",
              type=click.Choice(["console", "json", "compact"]),
              default="console", help="Output format.")
@_embeddings_option
@_verbose_option
@click.pass_context
def search(ctx: click.Context, source: Path, query: str, max_results: int | None,
           fmt: str, embeddings: bool | None, verbose: bool):
    """Search SOURCE for code relevant to QUERY."""
    client = _build_client(ctx, embeddings, verbose)
    _build_index(client, source)

    t0 = time.perf_counter()
    try:
        results = client.search(query, path=source, max_results=max_results)
    except RetrievalError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    elapsed = time.perf_counter() - t0

    formatter = ResultFormatter()
    if fmt == "json":
        click.echo(formatter.format_json(results))
    elif fmt == "compact":
        click.echo(formatter.format_compact(results))
    else:
        click.echo(formatter.format_console(results, client.strategy_name, elapsed_time=elapsed))


# ---------------------------------------------------------------------------
# coderetriever ask
# ---------------------------------------------------------------------------

@cli.command()
@_source_argument
@click.argument("question")
@click.option("-n", "--context-results", type=int, default=None,
              help="Number of code fragments sent as context.")
@_embeddings_option
@_verbose_option
@click.pass_context
def ask(ctx: click.Context, source: Path, question: str, context_results: int | None,
        embeddings: bool | None, verbose: bool):
    """Answer QUESTION about SOURCE with the configured LLM."""
    client = _build_client(ctx, embeddings, verbose)
    _validate_api_key(client.config)
    _build_index(client, source)

    try:
        answer = client.ask(question, path=source, context_results=context_results)
    except ProviderError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)
    click.echo(answer)


# ---------------------------------------------------------------------------
# coderetriever dump
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--with-embeddings", is_flag=True,
              help="Compute embeddings and include them in the dump.")
@_verbose_option
@click.pass_context
def dump(ctx: click.Context, directory: Path, output: Path,
         with_embeddings: bool, verbose: bool):
    """Parse DIRECTORY and write its fragments to OUTPUT as JSON."""
    from coderetriever.core.parser import dump_fragments

    client = _build_client(ctx, with_embeddings or None, verbose)
    _build_index(client, directory)
    count = dump_fragments(
        client.get_index(directory).all_fragments(), output,
        include_embedding=with_embeddings,
    )
    click.echo(f"Wrote {count:,} fragments to {output}")


# ---------------------------------------------------------------------------
# coderetriever shell
# ---------------------------------------------------------------------------

class ShellSession:
    """
    Interactive command loop over one in-memory index.

    Commands (``show`` refers to the numbers of the last ``search``):
      search <query>   ranked fragments
      ask <question>   retrieval-augmented LLM answer
      show <n>         details of result n
      list             first 50 fragments
      quit             leave the shell
    """

    COMMANDS = "search, ask, show, list, quit"

    def __init__(self, client: CodeRetriever, source: Path):
        self.client = client
        self.source = source
        self.formatter = ResultFormatter()
        self.last_results: List[CodeFragment] = []

    def banner(self) -> str:
        return "\n".join([
            "Available commands:",
            f"  search <query>   - Find relevant code (strategy: {self.client.strategy_name})",
            "  ask <question>   - Ask the LLM about the code",
            "  show <n>         - Show details of result n from the last search",
            "  list             - List the first 50 code elements",
            "  quit             - Exit",
            "",
        ])

    def handle(self, line: str) -> bool:
        """Run one command line; returns False when the session should end."""
        line = line.strip()
        if not line:
            return True
        command, _, argument = line.partition(" ")
        command = command.lower()
        argument = argument.strip()

        if command in ("quit", "exit"):
            return False
        if command == "search":
            if not argument:
                click.echo("Enter a search term.")
            else:
                self.search(argument)
        elif command == "ask":
            if not argument:
                click.echo("Enter a question for the LLM.")
            else:
                self.ask(argument)
        elif command == "show":
            try:
                self.show(int(argument))
            except ValueError:
                click.echo("Invalid number. Use 'show <n>'.")
        elif command == "list":
            fragments = self.client.get_index(self.source).all_fragments()
            click.echo(self.formatter.format_list(fragments))
        else:
            click.echo(f"Unknown command. Available commands: {self.COMMANDS}")
        return True

    def search(self, query: str) -> None:
        t0 = time.perf_counter()
        results = self.client.search(query, path=self.source)
        elapsed = time.perf_counter() - t0
        index = self.client.get_index(self.source)
        self.last_results = [index.get(r.fragment_id) for r in results]
        click.echo(self.formatter.format_console(results, self.client.strategy_name,
                                                 elapsed_time=elapsed))

    def ask(self, question: str) -> None:
        click.echo(f"\nThinking... (query: {question})")
        try:
            answer = self.client.ask(question, path=self.source)
        except ProviderError as exc:
            click.echo(f"Error: {exc}")
            return
        click.echo("\n" + "=" * 30 + " LLM answer " + "=" * 30)
        click.echo(answer)
        click.echo("=" * 72)

    def show(self, number: int) -> None:
        if not self.last_results:
            click.echo("No search results. Run 'search <query>' first.")
            return
        if not 0 <= number < len(self.last_results):
            click.echo(f"Invalid result number. Choose 0-{len(self.last_results) - 1}.")
            return
        click.echo(self.formatter.format_detail(self.last_results[number]))


@cli.command()
@_source_argument
@_embeddings_option
@_verbose_option
@click.pass_context
def shell(ctx: click.Context, source: Path, embeddings: bool | None, verbose: bool):
    """Index SOURCE and start an interactive search / ask session."""
    client = _build_client(ctx, embeddings, verbose)
    result = _build_index(client, source)
    click.echo(f"Index built ({result.fragments_total:,} elements).")

    session = ShellSession(client, source)
    click.echo(session.banner())
    while True:
        try:
            line = click.prompt(">", default="", show_default=False, prompt_suffix=" ")
        except (KeyboardInterrupt, EOFError, click.Abort):
            break
        if not session.handle(line):
            break
    click.echo("\nGoodbye!")


# ---------------------------------------------------------------------------
# coderetriever mcp
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--transport", type=click.Choice(["stdio", "sse"]),
              default="stdio", help="MCP transport (default: stdio).")
@_verbose_option
def mcp(transport: str, verbose: bool):
    """Start the Smart Code Retriever MCP server for agent integration."""
    _configure_logging(verbose)
    try:
        from coderetriever.mcp.server import create_server  # noqa: E402
    except ImportError:
        click.echo(
            "Error: MCP dependencies not installed.\n"
            "Install with:  pip install 'smart-code-retriever[mcp]'",
            err=True,
        )
        raise SystemExit(1)

    server = create_server()
    server.run(transport=transport)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_client(ctx: click.Context, embeddings: bool | None, verbose: bool) -> CodeRetriever:
    """Config from the environment plus command-line overrides."""
    config = RetrieverConfig.from_env()
    provider = (ctx.obj or {}).get("provider")
    if provider:
        config.llm_provider = provider
    if embeddings is not None:
        config.use_embeddings = embeddings
    _configure_logging(verbose, config)

    if config.use_embeddings:
        try:
            config.validate_embeddings()
        except ConfigError as exc:
            click.echo(f"Error: {exc}", err=True)
            raise SystemExit(1)
    return CodeRetriever(config=config)


def _build_index(client: CodeRetriever, source: Path):
    """Parse a directory or load a ``.json`` fragment dump into *client*."""
    try:
        if source.is_file():
            if source.suffix.lower() != ".json":
                click.echo(f"Error: {source} is neither a directory nor a .json dump", err=True)
                raise SystemExit(1)
            return client.load(source, path=source)
        return client.index(source, show_progress=True)
    except CodeRetrieverError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)


def _validate_api_key(config: RetrieverConfig) -> None:
    """Ensure the API key for the active LLM provider is available."""
    try:
        config.validate()
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
