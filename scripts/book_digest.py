"""Run the book digest pipeline from the command line.

Chapters are read from a JSON file produced by a document parser:

    {"title": "My Book", "chapters": [{"id": "c1", "title": "Intro", "content": "...",
                                       "tag": null}]}

Artifacts are cached in the file-backed store (CACHE_PATH), so re-running
the same command only generates what is missing. Ctrl-C cancels the run
without caching the in-flight stage.

Usage:
    python scripts/book_digest.py run <chapters.json> --book <filename> \
        [--mode summary|mindmap|combined_mindmap] [--category fiction|non-fiction] \
        [--language en] [--select c1 c2 ...] [--tag c1=Act1 ...] \
        [--custom-prompt TEXT] [--custom-only] [--dump <path>]
    python scripts/book_digest.py list-cache
    python scripts/book_digest.py clear <book> [--mode MODE | --kind KIND [--entity ID]]

Examples:
    # Summarize two chapters as one tag group
    python scripts/book_digest.py run chapters.json --book moby-dick.epub \
        --tag c1=Voyage --tag c2=Voyage

    # Drop the mind maps of a book but keep its summaries
    python scripts/book_digest.py clear moby-dick.epub --mode mindmap
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from pathlib import Path

# Ensure bookdigest is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def _parse_tags(pairs: list[str] | None) -> dict[str, str] | None:
    if not pairs:
        return None
    tags = {}
    for pair in pairs:
        chapter_id, sep, tag = pair.partition("=")
        if not sep or not chapter_id or not tag:
            raise SystemExit(f"ERROR: --tag expects CHAPTER_ID=TAG, got {pair!r}")
        tags[chapter_id] = tag
    return tags


def _print_result(result) -> None:
    print(f"\n{'=' * 60}")
    print(f"{result.book_title} ({result.mode.value})")
    print(f"{'=' * 60}")
    for group in result.groups:
        print(f"\n## {group.title}  [{group.group_id}]")
        if group.summary:
            print(group.summary)
    for label, text in (
        ("Connections", result.connections),
        ("Character relationships", result.character_relationship),
        ("Overall summary", result.overall_summary),
    ):
        if text:
            print(f"\n### {label}\n{text}")
    if result.mind_map is not None:
        print(f"\nMind map root: {result.mind_map.node_data.topic} "
              f"({len(result.mind_map.node_data.children)} branches)")


async def run_book(args: argparse.Namespace) -> int:
    from bookdigest.core.schemas_artifacts import BookCategory, ProcessingMode
    from bookdigest.core.schemas_pipeline import PipelineProgress, PipelineRequest, PipelineState
    from bookdigest.services.book_pipeline import PipelineRun
    from bookdigest.services.run_registry import get_book_pipeline

    source = json.loads(Path(args.chapters_file).read_text(encoding="utf-8"))
    request = PipelineRequest(
        book=args.book,
        book_title=args.title or source.get("title") or Path(args.book).stem,
        chapters=source["chapters"],
        tags=_parse_tags(args.tag) or source.get("tags"),
        selected_chapter_ids=args.select,
        mode=ProcessingMode(args.mode),
        book_category=BookCategory(args.category) if args.category else None,
        output_language=args.language,
        custom_prompt=args.custom_prompt or "",
        use_custom_only=args.custom_only,
    )

    def show_progress(progress: PipelineProgress) -> None:
        print(f"[{progress.percent:5.1f}%] {progress.message}")

    run = PipelineRun(get_book_pipeline(), request, on_progress=show_progress)
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, run.cancel)
    try:
        result = await run.execute()
    finally:
        loop.remove_signal_handler(signal.SIGINT)

    if run.state == PipelineState.ABORTED:
        print("\nRun cancelled; completed stages remain cached.")
        return 130
    if result is None:
        print(f"\nERROR: {run.error}")
        print("Re-run the same command to retry; completed stages are cached.")
        return 1

    _print_result(result)
    if args.dump:
        Path(args.dump).write_text(result.model_dump_json(by_alias=True, indent=2))
        print(f"\nResult written to {args.dump}")
    return 0


async def list_cache(args: argparse.Namespace) -> int:
    from bookdigest.db.artifact_cache import get_artifact_cache

    cache = get_artifact_cache()
    by_book = await cache.list_cache_by_book()
    if not by_book:
        print("Cache is empty.")
        return 0

    for token, entries in sorted(by_book.items()):
        print(f"\n{token} ({len(entries)} entries)")
        for entry in sorted(entries, key=lambda e: e.key):
            suffix = f" [{entry.entity_id}]" if entry.entity_id else ""
            print(f"  {entry.kind.value}{suffix}")
    print(f"\nTotal keys in store: {await cache.cache_size()}")
    return 0


async def clear_cache(args: argparse.Namespace) -> int:
    from bookdigest.core.schemas_artifacts import ArtifactKind, ProcessingMode
    from bookdigest.db.artifact_cache import get_artifact_cache

    cache = get_artifact_cache()
    if args.entity:
        if not args.kind:
            print("ERROR: --entity requires --kind")
            return 2
        deleted = int(
            await cache.clear_chapter_cache(args.book, args.entity, ArtifactKind(args.kind))
        )
    elif args.kind:
        deleted = await cache.clear_by_kind(args.book, ArtifactKind(args.kind))
    elif args.mode:
        deleted = await cache.clear_by_book_and_mode(args.book, ProcessingMode(args.mode))
    else:
        deleted = await cache.clear_all_for_book(args.book)

    print(f"Deleted {deleted} cache entries for {args.book}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Book digest pipeline")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the pipeline for a book")
    run_parser.add_argument("chapters_file", help="JSON file with title and chapters")
    run_parser.add_argument("--book", required=True, help="Source filename (cache identity)")
    run_parser.add_argument("--title", help="Book title (defaults to the JSON title)")
    run_parser.add_argument(
        "--mode", default="summary", choices=["summary", "mindmap", "combined_mindmap"]
    )
    run_parser.add_argument("--category", choices=["fiction", "non-fiction"])
    run_parser.add_argument("--language", help="Output language code, e.g. en, zh")
    run_parser.add_argument("--select", nargs="+", help="Only process these chapter ids")
    run_parser.add_argument("--tag", action="append", help="CHAPTER_ID=TAG, repeatable")
    run_parser.add_argument(
        "--custom-prompt", help="Extra instructions for chapter summaries and mind maps"
    )
    run_parser.add_argument(
        "--custom-only", action="store_true", help="Use only the custom prompt for summaries"
    )
    run_parser.add_argument("--dump", help="Write the result JSON to this path")
    run_parser.set_defaults(handler=run_book)

    list_parser = subparsers.add_parser("list-cache", help="List cached artifacts by book")
    list_parser.set_defaults(handler=list_cache)

    clear_parser = subparsers.add_parser("clear", help="Delete cached artifacts of a book")
    clear_parser.add_argument("book", help="Source filename or book token")
    group = clear_parser.add_mutually_exclusive_group()
    group.add_argument("--mode", choices=["summary", "mindmap", "combined_mindmap"])
    group.add_argument("--kind", help="Artifact kind, e.g. summary, connections")
    clear_parser.add_argument("--entity", help="Chapter/group id (with --kind)")
    clear_parser.set_defaults(handler=clear_cache)

    return parser


def main() -> None:
    args = build_parser().parse_args()
    # The CLI persists artifacts between invocations
    os.environ.setdefault("CACHE_BACKEND", "file")
    sys.exit(asyncio.run(args.handler(args)))


if __name__ == "__main__":
    main()
