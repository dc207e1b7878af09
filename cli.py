from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Tuple

import requests
from dotenv import load_dotenv

from ragwidgets.citations import parse_citations, render_as_sequential_links
from ragwidgets.config import Settings
from ragwidgets.context import SearchContext
from ragwidgets.history import SearchHistory
from ragwidgets.types import HistoryEntry
from ragwidgets.widgets import AnswerResults, QueryBox

QUERY_BOX_KEY = "question"
ANSWER_KEY = "answer"


def _http_session() -> requests.Session:
    return requests.Session()


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _write_chunk(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _mount(
    args: argparse.Namespace,
    settings: Settings,
    history: Optional[SearchHistory],
) -> Tuple[SearchContext, QueryBox, AnswerResults]:
    """Mount a context with one question box and one streaming answer."""
    context = SearchContext(settings.base_url, headers=settings.request_headers(), table=settings.table)
    fields = args.fields or settings.fields
    query_box = QueryBox(
        context,
        QUERY_BOX_KEY,
        mode="submit",
        fields=fields,
        semantic=args.semantic,
        semantic_indexes=args.indexes,
        limit=args.limit or settings.result_limit,
        table=args.table or None,
    )
    answers = AnswerResults(
        context,
        ANSWER_KEY,
        QUERY_BOX_KEY,
        summarizer=settings.summarizer(),
        system_prompt=args.system_prompt or settings.system_prompt or None,
        fields=fields,
        http=_http_session(),
        timeout=(settings.connect_timeout_seconds, settings.read_timeout_seconds),
        history=history,
        on_chunk=None if args.raw else _write_chunk,
    )
    return context, query_box, answers


def _print_citations(answers: AnswerResults) -> None:
    """List cited documents in the order they were first referenced."""
    cited = answers.cited_ids()
    if not cited:
        return
    print("\nSources:")
    for idx, doc_id in enumerate(cited, start=1):
        print(f"[{idx}] {doc_id}")


def _ask(question: str, query_box: QueryBox, answers: AnswerResults, raw: bool) -> int:
    """Submit one question, stream the answer and report the outcome."""
    query_box.submit(question)
    try:
        while not answers.wait(0.1):
            pass
    except KeyboardInterrupt:
        answers.stop()
        print("\nInterrupted.", file=sys.stderr)
        return 1

    if answers.error:
        print(f"\nError: {answers.error}", file=sys.stderr)
        return 1
    if raw:
        print(answers.summary)
        return 0
    print()
    if parse_citations(answers.summary):
        print("\nWith numbered citations:")
        print(answers.render(render_as_sequential_links))
        _print_citations(answers)
    return 0


def command_ask(args: argparse.Namespace, settings: Settings) -> int:
    """Answer a single question."""
    question = args.question.strip()
    if not question:
        print("Question must not be empty.", file=sys.stderr)
        return 2
    history = SearchHistory(settings.history_path, settings.history_max_results)
    context, query_box, answers = _mount(args, settings, history)
    with context:
        return _ask(question, query_box, answers, raw=args.raw)


def command_chat(args: argparse.Namespace, settings: Settings) -> int:
    """Start an interactive Q&A session in the terminal."""
    history = SearchHistory(settings.history_path, settings.history_max_results)
    context, query_box, answers = _mount(args, settings, history)
    print("Interactive chat started. Type 'exit' or 'quit' to stop.")
    with context:
        while True:
            try:
                question = input("\nYou> ").strip()
            except EOFError:
                print("\nExiting chat.")
                break

            if not question:
                continue
            if question.lower() in {"exit", "quit"}:
                print("Exiting chat.")
                break

            print("\nAssistant>")
            _ask(question, query_box, answers, raw=args.raw)
    return 0


def _print_entry(idx: int, entry: HistoryEntry, max_chars: int) -> None:
    summary = str(entry.get("summary", "")).strip().replace("\n", " ")
    if len(summary) > max_chars:
        summary = summary[:max_chars] + "..."
    print(f"[{idx}] {entry.get('query', '')}")
    print(f"    {summary}")


def command_history(args: argparse.Namespace, settings: Settings) -> int:
    """Show saved answers, most recent first."""
    history = SearchHistory(settings.history_path, settings.history_max_results)
    results: List[HistoryEntry] = history.results
    if not results:
        print("No saved searches.")
        return 0
    for idx, entry in enumerate(results, start=1):
        _print_entry(idx, entry, args.summary_chars)
    return 0


def command_clear_history(_: argparse.Namespace, settings: Settings) -> int:
    """Forget every saved answer."""
    SearchHistory(settings.history_path, settings.history_max_results).clear()
    print("Search history cleared.")
    return 0


def _add_stream_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--table", default="", help="Table to search (overrides RAG_TABLE)")
    parser.add_argument("--fields", nargs="+", default=None, help="Fields matched by the full-text query")
    parser.add_argument("--semantic", action="store_true", help="Send the question as a semantic query")
    parser.add_argument("--indexes", nargs="+", default=None, help="Semantic indexes to search")
    parser.add_argument("--limit", type=int, default=None, help="Number of documents retrieved")
    parser.add_argument("--system-prompt", default="", help="System prompt for the summarizer")
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the final answer only, without streaming or citation rendering",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(description="Streaming RAG answer CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask_parser = subparsers.add_parser("ask", help="Ask one question and stream the answer")
    ask_parser.add_argument("question", help="Question text")
    _add_stream_options(ask_parser)

    chat_parser = subparsers.add_parser("chat", help="Start interactive terminal Q&A")
    _add_stream_options(chat_parser)

    history_parser = subparsers.add_parser("history", help="Show saved answers")
    history_parser.add_argument(
        "--summary-chars",
        type=int,
        default=240,
        help="Max characters shown per saved answer",
    )

    subparsers.add_parser("clear-history", help="Delete saved answers")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    load_dotenv()
    settings = Settings()
    _configure_logging(settings.log_level)
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.command == "ask":
        return command_ask(args, settings)
    if args.command == "chat":
        return command_chat(args, settings)
    if args.command == "history":
        return command_history(args, settings)
    if args.command == "clear-history":
        return command_clear_history(args, settings)

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
