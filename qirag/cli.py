"""CLI for qirag."""

from dataclasses import asdict, replace
import json
import logging
from pathlib import Path

import click

from .retrieval.config import RetrievalConfig


def _config(ctx: click.Context) -> RetrievalConfig:
    return ctx.obj["config"]


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Logging verbosity",
)
@click.option("--db", type=click.Path(path_type=Path), help="Passage database (RAG_DB_PATH)")
@click.option("--graph", type=click.Path(path_type=Path), help="Relevance graph JSON (RAG_GRAPH_PATH)")
@click.pass_context
def cli(ctx: click.Context, log_level: str, db: Path | None, graph: Path | None):
    """qirag - graph-fused passage retrieval over a knowledge corpus."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = RetrievalConfig.from_env()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if db:
        config = replace(config, db_path=str(db))
    if graph:
        config = replace(config, graph_path=str(graph))
    ctx.obj = {"config": config}


@cli.command()
@click.argument("corpus_dir", required=False, type=click.Path(path_type=Path))
@click.option("--dimensions", type=int, default=None, help="Override embedding size")
@click.pass_context
def ingest(ctx: click.Context, corpus_dir: Path | None, dimensions: int | None):
    """Chunk, embed and store every document under CORPUS_DIR."""
    from .corpus.ingest import CorpusIngester
    from .vector.embedder import Embedder
    from .vector.store import PassageStore

    config = _config(ctx)
    corpus_dir = corpus_dir or Path(config.ingest_dir)
    if not corpus_dir.is_dir():
        raise click.ClickException(f"Corpus directory not found: {corpus_dir}")

    click.echo(f"Ingesting corpus: {corpus_dir} -> {config.db_path}")
    embedder = Embedder(config.embedding_model)
    store = PassageStore(config.db_path, dimensions=dimensions or embedder.dimensions)
    stats = CorpusIngester(store, embedder, config).ingest_directory(corpus_dir)

    click.echo("\nIngestion Complete!")
    click.echo(f"Files:   {stats['files']}")
    click.echo(f"Chunks:  {stats['chunks']}")
    click.echo(f"Errors:  {stats['errors']}")
    click.echo(f"Stored:  {store.count()}")

    if stats["errors"] > 0:
        click.echo("\nError Details:")
        for err in stats["failed"]:
            click.echo(f"  - {err['path']}: {err['error']}")
        raise SystemExit(1)


@cli.command()
@click.argument("query", type=str)
@click.option("--top-k", "-k", type=int, default=None, help="Number of passages")
@click.option("--context", "-c", default=None, help="Extra text used to seed the graph")
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "table", "context"]),
    default="table",
    help="Output format: json (full diagnostics), table (scores) or context (prompt block)",
)
@click.pass_context
def retrieve(ctx: click.Context, query: str, top_k: int | None, context: str | None, format: str):
    """Rank passages for QUERY."""
    from .retrieval.pipeline import retrieve_structured, run_retrieval
    from .retrieval.renderer import render_context_block, render_result_table

    config = _config(ctx)
    if format == "json":
        _echo_json(retrieve_structured(query, top_k, context, config=config))
        return

    outcome = run_retrieval(query, top_k, context, config=config)
    results = list(outcome.results)
    if format == "context":
        click.echo(render_context_block(results))
        return

    click.echo(
        f"Candidates: {outcome.candidate_count}  Lexical hits: {outcome.lexical_hits}  "
        f"Graph confidence: {outcome.graph_features.confidence:.3f}"
    )
    for warning in outcome.warnings:
        click.echo(f"  [warn] {warning}")
    click.echo(render_result_table(results))


@cli.command("graph-features")
@click.argument("query", type=str)
@click.option("--context", "-c", default=None, help="Extra text used to seed the graph")
@click.pass_context
def graph_features(ctx: click.Context, query: str, context: str | None):
    """Show PPR-derived graph features for QUERY."""
    from .graph.loader import GraphRepository
    from .graph.ppr import compute_graph_query_features

    config = _config(ctx)
    features = compute_graph_query_features(
        query,
        context,
        graph_path=config.graph_path,
        repository=GraphRepository(config.graph),
        policy=config.graph,
    )
    payload = asdict(features)
    payload["token_boost"] = dict(
        sorted(features.token_boost.items(), key=lambda item: (-item[1], item[0]))
    )
    _echo_json(payload)


@cli.command("eval")
@click.option("--set", "eval_set", type=click.Path(path_type=Path), default=None, help="JSONL eval set (RAG_EVAL_SET_PATH)")
@click.option("--limit", type=int, default=None, help="Only evaluate the first N cases")
@click.option("--report-dir", type=click.Path(path_type=Path), default=None, help="Report directory (RAG_EVAL_REPORT_DIR)")
@click.pass_context
def eval_command(ctx: click.Context, eval_set: Path | None, limit: int | None, report_dir: Path | None):
    """Measure evidence keyword coverage and source-hint hits."""
    from .evaluation import read_eval_set, run_evaluation, write_report
    from .vector.embedder import Embedder
    from .vector.store import PassageStore

    config = _config(ctx)
    set_path = eval_set or Path(config.eval_set_path)
    if not set_path.exists():
        raise click.ClickException(f"Eval set not found: {set_path}")

    try:
        cases = read_eval_set(set_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    if limit is not None and limit > 0:
        cases = cases[:limit]
    click.echo(f"Loaded {len(cases)} cases from {set_path}")

    embedder = Embedder(config.embedding_model)
    store = PassageStore(config.db_path, dimensions=embedder.dimensions)
    report = run_evaluation(
        cases,
        config=config,
        eval_set_path=str(set_path),
        storage=store,
        embedder=embedder,
    )
    output_path = write_report(report, report_dir or Path(config.eval_report_dir))

    summary = report["summary"]
    click.echo(f"Citation presence:  {summary['citation_presence_rate']:.4f}")
    click.echo(f"Source hint hits:   {summary['source_hint_hit_rate']:.4f}")
    click.echo(f"Evidence coverage:  {summary['avg_evidence_keyword_coverage']:.4f}")
    click.echo(f"Report: {output_path}")


if __name__ == "__main__":
    cli()
