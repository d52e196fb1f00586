"""
Command-line entry point for the studio.

Usage:
    python -m stylepass.cli resolve "https://youtu.be/dQw4w9WgXcQ?t=30"
    python -m stylepass.cli analyze --file clip.mp4 --views 12000
    python -m stylepass.cli analyze --url https://www.tiktok.com/@me/video/123 --platform tiktok
    python -m stylepass.cli capture --seconds 30
    python -m stylepass.cli history
    python -m stylepass.cli script "morning routine" --export txt
    python -m stylepass.cli compare <id> <id> [<id> ...]
    python -m stylepass.cli roadmap Coding Design
    python -m stylepass.cli ideas "street food"
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import List, Optional

from . import state as st
from .capture import CaptureSessionManager, Region
from .embeds import resolve_embed
from .errors import StudioError
from .exports import COMPARISON_FILENAME, EXPORT_KINDS, render_export, script_filename, write_export
from .gemini_service import GeminiService
from .history import MAX_COMPARE, MIN_COMPARE, HistoryStore
from .orchestrator import AnalysisOrchestrator
from .state import AppState
from .types import StylePassport
from .urls import normalize

logger = logging.getLogger("stylepass.cli")


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Style passport studio for short-form video.")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve", help="Normalise a video link and show its player embed.")
    resolve.add_argument("url")

    analyze = sub.add_parser("analyze", help="Analyse an uploaded file or a platform link.")
    source = analyze.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="Local video file to upload.")
    source.add_argument("--url", help="Platform link, analysed through search.")
    _add_common_analysis_args(analyze)

    capture = sub.add_parser("capture", help="Record the screen, then analyse the recording.")
    capture.add_argument("--seconds", type=float, default=None, help="Stop automatically after N seconds.")
    capture.add_argument(
        "--region",
        nargs=4,
        type=int,
        metavar=("X", "Y", "WIDTH", "HEIGHT"),
        help="Only record this rectangle of the display.",
    )
    _add_common_analysis_args(capture)

    history = sub.add_parser("history", help="List, show or delete past analyses.")
    history.add_argument("--show", metavar="ID", help="Print the full passport of one item.")
    history.add_argument("--delete", metavar="ID", help="Delete one item.")

    script = sub.add_parser("script", help="Write a script in the style of a past analysis.")
    script.add_argument("topic")
    script.add_argument("--item", metavar="ID", help="History item to imitate (default: latest).")
    _add_export_args(script)

    compare = sub.add_parser("compare", help="Compare two to five past analyses.")
    compare.add_argument("ids", nargs="+", metavar="ID")
    _add_export_args(compare)

    roadmap = sub.add_parser("roadmap", help="Build an interest map from two interests.")
    roadmap.add_argument("interest_a")
    roadmap.add_argument("interest_b")

    ideas = sub.add_parser("ideas", help="Suggest video ideas, personalised with the latest analysis.")
    ideas.add_argument("topic")
    ideas.add_argument("--generic", action="store_true", help="Ignore history and ask for universal formats.")

    return parser.parse_args(argv)


def _add_common_analysis_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--platform", choices=list(st.PLATFORMS), default="instagram")
    parser.add_argument("--views", type=int, default=0)
    parser.add_argument("--likes", type=int, default=0)
    parser.add_argument("--comments", type=int, default=0)


def _add_export_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--export", choices=list(EXPORT_KINDS), help="Also write the result to a file.")
    parser.add_argument("--out-dir", default=".", help="Directory for exported files.")


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def _print_passport(passport: StylePassport) -> None:
    metrics = passport.style_metrics
    print(passport.creator_profile_summary)
    print("-" * 80)
    print(f"Pace: {metrics.words_per_minute:.0f} WPM   Dominant emotion: {metrics.dominant_emotion}")
    for axis in metrics.emotional_spectrum:
        print(f"  {axis.label:<20} {axis.score:5.1f}")
    if passport.engagement_metrics is not None:
        em = passport.engagement_metrics
        print(
            f"Views {em.views:,}  Likes {em.likes:,}  Comments {em.comments:,}  "
            f"ER {em.engagement_rate or '-'}  Virality {em.virality_score if em.virality_score is not None else '-'}"
        )
    print("Structure:")
    for segment in passport.video_structure:
        print(f"  [{segment.time_range}] {segment.segment_type}: {segment.description}")
    print("Retention insights:")
    for insight in passport.retention_formula_insights:
        print(f"  - {insight}")
    if metrics.signature_phrases:
        print("Signature phrases: " + "; ".join(metrics.signature_phrases))


def _finish(state: AppState) -> int:
    analysis = state.analysis
    if analysis.passport is not None:
        _print_passport(analysis.passport)
        if analysis.history_id:
            print(f"History id: {analysis.history_id}")
    if analysis.error:
        print(f"Error: {analysis.error}", file=sys.stderr)
        # A fresh run only has a passport if this analysis produced it.
        return 0 if analysis.passport is not None else 1
    return 0


def _maybe_export(content, basename: str, args: argparse.Namespace) -> None:
    if args.export:
        path = write_export(render_export(content, args.export, basename), args.out_dir)
        print(f"Saved {path}")


def _initial_state(args: argparse.Namespace) -> AppState:
    state = st.change_platform(AppState(), args.platform)
    return st.set_metrics(state, views=args.views, likes=args.likes, comments=args.comments)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_resolve(args: argparse.Namespace) -> int:
    ref = normalize(args.url)
    print(f"Platform: {ref.platform.value}")
    print(f"Cleaned:  {ref.cleaned}")
    print(f"Video id: {ref.video_id or '(could not resolve)'}")
    embed = resolve_embed(ref)
    print(embed.to_html())
    return 0 if ref.is_resolved else 1


def _cmd_analyze(args: argparse.Namespace, orchestrator: AnalysisOrchestrator) -> int:
    state = _initial_state(args)
    if args.file:
        state = orchestrator.analyze_file_into(state, args.file)
    else:
        state = orchestrator.analyze_reference_into(st.set_url_input(state, args.url))
    return _finish(state)


def _cmd_capture(args: argparse.Namespace, orchestrator: AnalysisOrchestrator) -> int:
    manager = CaptureSessionManager()
    region = Region(*args.region) if args.region else None
    state = orchestrator.start_capture(_initial_state(args), manager, region)
    if state.analysis.error:
        print(f"Error: {state.analysis.error}", file=sys.stderr)
        return 1
    try:
        if args.seconds:
            print(f"Recording for {args.seconds:.0f}s...")
            time.sleep(args.seconds)
        else:
            input("Recording. Press Enter to stop and analyse.")
    except KeyboardInterrupt:
        print()
    print("Analysing...")
    return _finish(orchestrator.stop_capture(state, manager))


def _cmd_history(args: argparse.Namespace, history: HistoryStore) -> int:
    if args.delete:
        if not history.delete(args.delete):
            print(f"No history item {args.delete}", file=sys.stderr)
            return 1
        print(f"Deleted {args.delete}")
        return 0
    if args.show:
        item = history.get(args.show)
        if item is None:
            print(f"No history item {args.show}", file=sys.stderr)
            return 1
        print(json.dumps(item.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return 0
    if not len(history):
        print("History is empty.")
        return 0
    for item in history.items:
        created = datetime.fromtimestamp(item.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
        summary = item.passport.creator_profile_summary[:60]
        print(f"{item.id}  {created}  {item.platform:<9}  {summary}")
    return 0


def _cmd_script(args: argparse.Namespace, service: GeminiService, history: HistoryStore) -> int:
    item = history.get(args.item) if args.item else history.latest()
    if item is None:
        print("No analysis to imitate. Run 'analyze' first.", file=sys.stderr)
        return 1
    lines = service.generate_script(args.topic, item.passport)
    for line in lines:
        print(f"[{line.time_range}]\n  VISUAL: {line.visual}\n  AUDIO:  {line.audio}")
    _maybe_export(lines, script_filename(args.topic), args)
    return 0


def _cmd_compare(args: argparse.Namespace, service: GeminiService, history: HistoryStore) -> int:
    if not MIN_COMPARE <= len(args.ids) <= MAX_COMPARE:
        print(f"Select between {MIN_COMPARE} and {MAX_COMPARE} items to compare.", file=sys.stderr)
        return 1
    items = history.select(args.ids)
    if len(items) != len(set(args.ids)):
        print("Some ids are not in history.", file=sys.stderr)
        return 1
    report = service.compare_videos(items)
    print(report)
    if args.export == "json":
        _maybe_export({"text": report}, COMPARISON_FILENAME, args)
    else:
        _maybe_export(report, COMPARISON_FILENAME, args)
    return 0


def _cmd_roadmap(args: argparse.Namespace, service: GeminiService) -> int:
    roadmap = service.generate_interest_map(args.interest_a, args.interest_b)
    print(json.dumps(roadmap.model_dump(by_alias=True), indent=2, ensure_ascii=False))
    return 0


def _cmd_ideas(args: argparse.Namespace, service: GeminiService, history: HistoryStore) -> int:
    latest = None if args.generic else history.latest()
    ideas = service.generate_content_ideas(args.topic, latest.passport if latest else None)
    for idx, idea in enumerate(ideas, start=1):
        print(f"[{idx}] {idea.title} ({idea.format})")
        print(f"    Hook: {idea.hook}")
        print(f"    Why it works: {idea.why_it_works}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    _configure_logging()
    args = _parse_args(argv)

    if args.command == "resolve":
        return _cmd_resolve(args)

    history = HistoryStore()
    if args.command == "history":
        return _cmd_history(args, history)

    service = GeminiService()
    try:
        if args.command in ("analyze", "capture"):
            orchestrator = AnalysisOrchestrator(service=service, history=history)
            try:
                if args.command == "analyze":
                    return _cmd_analyze(args, orchestrator)
                return _cmd_capture(args, orchestrator)
            finally:
                orchestrator.close()
        if args.command == "script":
            return _cmd_script(args, service, history)
        if args.command == "compare":
            return _cmd_compare(args, service, history)
        if args.command == "roadmap":
            return _cmd_roadmap(args, service)
        return _cmd_ideas(args, service, history)
    except StudioError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc.user_message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
