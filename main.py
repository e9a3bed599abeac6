#!/usr/bin/env python3
"""
Cross-Venue Market Verifier
Check whether Kalshi and Polymarket markets resolve on the same terms before trading the spread.

Usage:
  python main.py verify --topic "Fed rate cut"   [--max-pairs N] [--min-similarity N] [--sample]
  python main.py pair --kalshi TICKER --polymarket ID  [--sample]
  python main.py similarity "question one" "question two" [--embeddings]
  python main.py demo [--topic T]
"""

import argparse
import logging
import sys

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

import config
from batch import quick_verify, run_batch
from embedding_cache import EmbeddingCache
from errors import VerifierError
from models import (
    AgentResult,
    CachePolicy,
    MarketResolutionCriteria,
    MatchedPairResult,
    Recommendation,
    Severity,
    SimilaritySource,
    Venue,
)
from similarity import classify_similarity, token_similarity, triage_pair
from verifier import Verifier, VerifyOptions

console = Console()


# ── wiring ────────────────────────────────────────────────────────────────────


def _setup_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _build_cache() -> EmbeddingCache:
    from clients.embeddings import GeminiEmbedder
    return EmbeddingCache(GeminiEmbedder(), policy=CachePolicy(config.CACHE_TEXT_POLICY))


def _build_verifier(cache: EmbeddingCache | None = None) -> Verifier:
    from clients.judge import GeminiJudge
    return Verifier(GeminiJudge(), cache=cache)


def _build_discovery(sample: bool):
    """(Kalshi, Polymarket) discovery pair. Sample data only when asked for."""
    if sample:
        from clients.sample import SampleDiscovery
        return SampleDiscovery(Venue.KALSHI), SampleDiscovery(Venue.POLYMARKET)
    from clients.kalshi import KalshiDiscovery
    from clients.polymarket import PolymarketDiscovery
    return KalshiDiscovery(), PolymarketDiscovery()


# ── helpers ──────────────────────────────────────────────────────────────────


def _link(text: str, url: str) -> Text:
    if url:
        return Text(text, style=f"link {url}")
    return Text(text)


def _fmt_price(price: float | None) -> str:
    return f"{price * 100:.1f}¢" if price is not None else "—"


def _fmt_spread(spread: float | None) -> str:
    return f"{spread:.1f}¢" if spread is not None else "—"


_REC_STYLE = {
    Recommendation.SAFE_TO_TRADE: "green",
    Recommendation.PROCEED_WITH_CAUTION: "yellow",
    Recommendation.AVOID: "red",
    Recommendation.MANUAL_REVIEW: "magenta",
}

_SEVERITY_STYLE = {
    Severity.LOW: "dim",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "red",
    Severity.CRITICAL: "bold red",
}


def _rec_cell(rec: Recommendation) -> Text:
    return Text(rec.value, style=_REC_STYLE[rec])


# ── verify command ────────────────────────────────────────────────────────────


def cmd_verify(args: argparse.Namespace) -> None:
    kalshi, polymarket = _build_discovery(args.sample)
    verifier = _build_verifier()
    source = "sample data" if args.sample else "live venues"

    console.print(f"\n[bold]Searching [cyan]{args.topic}[/cyan][/bold] on {source}…")
    result = run_batch(
        args.topic,
        kalshi,
        polymarket,
        verifier,
        max_pairs=args.max_pairs,
        min_similarity=args.min_similarity,
        limit=args.limit,
    )
    _render_agent_result(result)


def _render_agent_result(result: AgentResult) -> None:
    for failure in result.discovery_failures:
        console.print(f"[yellow]Discovery failed:[/yellow] {failure}")

    stats = result.statistics
    console.print(Panel(
        f"[bold]Kalshi markets scanned:[/bold]     [cyan]{stats.markets_scanned_a}[/cyan]\n"
        f"[bold]Polymarket markets scanned:[/bold] [cyan]{stats.markets_scanned_b}[/cyan]\n"
        f"[bold]Matches verified:[/bold]           [cyan]{stats.matches_found}[/cyan]\n"
        f"[green]Safe {stats.safe_to_trade}[/green]  "
        f"[yellow]Caution {stats.proceed_with_caution}[/yellow]  "
        f"[red]Avoid {stats.avoid}[/red]  "
        f"[magenta]Review {stats.needs_review}[/magenta]",
        title=f"[bold cyan]{result.topic}[/bold cyan]",
        border_style="cyan",
    ))

    if result.matched_pairs:
        _render_pair_table(result.matched_pairs)
        for pair in result.matched_pairs:
            _render_misalignments(pair)

    for failure in result.pair_failures:
        console.print(
            f"[red]Verification failed[/red] {failure.market_a_id} vs {failure.market_b_id}: "
            f"[dim]{failure.error_type}: {failure.error}[/dim]"
        )
    if result.screened_out:
        console.print(f"[dim]{len(result.screened_out)} candidate pair(s) screened out by the pre-filter[/dim]")

    console.print(f"\n{result.summary}\n")


def _render_pair_table(pairs: list[MatchedPairResult]) -> None:
    table = Table(
        title="[bold]Verified Pairs[/bold]",
        box=box.ROUNDED,
        show_lines=True,
        header_style="bold magenta",
        title_style="bold white",
    )
    table.add_column("Kalshi", min_width=28, max_width=44, no_wrap=False)
    table.add_column("Price", width=8, justify="center")
    table.add_column("Polymarket", min_width=28, max_width=44, no_wrap=False)
    table.add_column("Price", width=8, justify="center")
    table.add_column("Spread", width=8, justify="right")
    table.add_column("Risk", width=9, justify="center")
    table.add_column("Recommendation", width=22)
    table.add_column("Arb", width=4, justify="center")

    for p in pairs:
        v = p.verification
        rec = _rec_cell(v.recommendation)
        if v.was_adjusted:
            rec.append(f"\n(judge: {v.judge_recommendation.value})", style="dim")
        table.add_row(
            _link(p.market_a.question, p.market_a.url),
            _fmt_price(p.market_a.observed_price),
            _link(p.market_b.question, p.market_b.url),
            _fmt_price(p.market_b.observed_price),
            _fmt_spread(p.price_spread),
            Text(v.risk_level.value, style=_SEVERITY_STYLE[v.risk_level]),
            rec,
            "[green]✓[/green]" if p.arbitrage_opportunity else "",
        )
    console.print(table)


def _render_misalignments(pair: MatchedPairResult) -> None:
    v = pair.verification
    if not v.misalignments:
        return
    table = Table(
        title=f"[bold]{pair.market_a.id}[/bold] ↔ [bold]{pair.market_b.id}[/bold]",
        box=box.SIMPLE,
        header_style="bold magenta",
        padding=(0, 1),
    )
    table.add_column("Type", width=18)
    table.add_column("Severity", width=9)
    table.add_column("Description", min_width=30, no_wrap=False)
    table.add_column("Impact", min_width=24, no_wrap=False)
    for m in v.misalignments:
        table.add_row(
            m.type.value,
            Text(m.severity.value, style=_SEVERITY_STYLE[m.severity]),
            m.description,
            m.potential_impact,
        )
    console.print(table)
    console.print(f"[dim]{v.reasoning}[/dim]\n")


# ── pair command ──────────────────────────────────────────────────────────────


def cmd_pair(args: argparse.Namespace) -> None:
    kalshi, polymarket = _build_discovery(args.sample)
    verifier = _build_verifier()

    console.print(f"\n[bold]Verifying[/bold] {args.kalshi} ↔ {args.polymarket}…")
    result = quick_verify(args.kalshi, args.polymarket, kalshi, polymarket, verifier)

    verdict = "[green]Same market[/green]" if result.verified else "[red]Not equivalent[/red]"
    style = _REC_STYLE[result.recommendation]
    console.print(Panel(
        f"[bold]Verdict:[/bold]        {verdict}\n"
        f"[bold]Confidence:[/bold]     {result.confidence:.0%}\n"
        f"[bold]Recommendation:[/bold] [{style}]{result.recommendation.value}[/{style}]\n"
        f"[bold]Top issue:[/bold]      {result.top_misalignment or '—'}",
        title="[bold cyan]Quick Verify[/bold cyan]",
        border_style="cyan",
    ))


# ── similarity command ────────────────────────────────────────────────────────


def cmd_similarity(args: argparse.Namespace) -> None:
    if args.embeddings:
        cache = _build_cache()
        verifier = _build_verifier(cache)
        a = _adhoc(Venue.KALSHI, "cli-a", args.text_a)
        b = _adhoc(Venue.POLYMARKET, "cli-b", args.text_b)
        pre = verifier.prefilter(a, b, VerifyOptions(similarity_source=SimilaritySource.EMBEDDING))
        sim, label = pre.similarity, "embedding cosine"
    else:
        sim, label = token_similarity(args.text_a, args.text_b), "token Jaccard"

    band, guidance = classify_similarity(sim)
    triage = triage_pair("a", args.text_a, "b", args.text_b)
    console.print(Panel(
        f"[bold]Similarity ({label}):[/bold] [cyan]{sim:.3f}[/cyan]\n"
        f"[bold]Band:[/bold]    {band.value}  [dim]{guidance}[/dim]\n"
        f"[bold]Triage:[/bold]  {triage.verdict.value}"
        + ("  [dim](needs detailed verification)[/dim]" if triage.needs_detailed_verification else ""),
        title="[bold cyan]Pre-filter[/bold cyan]",
        border_style="cyan",
    ))


def _adhoc(venue: Venue, market_id: str, question: str) -> MarketResolutionCriteria:
    return MarketResolutionCriteria(venue=venue, market_id=market_id, question=question)


# ── demo command ──────────────────────────────────────────────────────────────


def cmd_demo(args: argparse.Namespace) -> None:
    console.print("[dim]Demo mode: discovery uses built-in sample markets, judgment is live.[/dim]")
    args.sample = True
    args.max_pairs = config.MAX_PAIRS_PER_BATCH
    args.min_similarity = config.MATCH_MIN_SIMILARITY
    args.limit = config.DISCOVERY_LIMIT
    cmd_verify(args)


# ── entry point ───────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Verify that Kalshi and Polymarket markets resolve on the same terms.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # verify
    p_ver = sub.add_parser("verify", help="Discover, pair and verify markets for a topic")
    p_ver.add_argument("--topic", required=True, help="Search topic, e.g. 'Fed rate cut'")
    p_ver.add_argument("--max-pairs", type=int, default=config.MAX_PAIRS_PER_BATCH, metavar="N",
                       help=f"Max candidate pairs to verify (default: {config.MAX_PAIRS_PER_BATCH})")
    p_ver.add_argument("--min-similarity", type=float, default=config.MATCH_MIN_SIMILARITY, metavar="N",
                       help=f"Min matching similarity 0.0–1.0 (default: {config.MATCH_MIN_SIMILARITY})")
    p_ver.add_argument("--limit", type=int, default=config.DISCOVERY_LIMIT, metavar="N",
                       help=f"Max markets per venue (default: {config.DISCOVERY_LIMIT})")
    p_ver.add_argument("--sample", action="store_true",
                       help="Use built-in sample markets instead of the live venues")

    # pair
    p_pair = sub.add_parser("pair", help="Verify one specific Kalshi/Polymarket pair")
    p_pair.add_argument("--kalshi", required=True, metavar="TICKER", help="Kalshi market ticker")
    p_pair.add_argument("--polymarket", required=True, metavar="ID",
                        help="Polymarket condition id (or a phrase from its question)")
    p_pair.add_argument("--sample", action="store_true",
                        help="Use built-in sample markets instead of the live venues")

    # similarity
    p_sim = sub.add_parser("similarity", help="Score two questions with the local pre-filter")
    p_sim.add_argument("text_a", metavar="TEXT")
    p_sim.add_argument("text_b", metavar="TEXT")
    p_sim.add_argument("--embeddings", action="store_true",
                       help="Use Gemini embeddings instead of token overlap")

    # demo
    p_demo = sub.add_parser("demo", help="Run a batch against the built-in sample markets")
    p_demo.add_argument("--topic", default="Fed rate cut", help="Topic (default: 'Fed rate cut')")

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    _setup_logging()

    console.print(Panel.fit(
        "[bold cyan]Cross-Venue Market Verifier[/bold cyan]\n"
        "[dim]Kalshi  ↔  Polymarket[/dim]",
        border_style="cyan",
    ))

    commands = {
        "verify": cmd_verify,
        "pair": cmd_pair,
        "similarity": cmd_similarity,
        "demo": cmd_demo,
    }
    try:
        commands[args.command](args)
    except VerifierError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
