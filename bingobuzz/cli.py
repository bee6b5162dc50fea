"""BingoBuzz command-line interface.

Argparse-based CLI that initializes logging early and drives the board
headlessly. Exposed via ``python -m bingobuzz`` and ``run.py``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

# Suppress pygame support prompt so JSON outputs remain clean.
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

from .constants import DEFAULT_BASE_PATH, MANIFEST_FILENAME, STOP_FADE_MS
from .engine.audio import AudioEngine, AudioState
from .engine.backends import probe_backend
from .engine.playlist import Playlist
from .engine.shuffler import build_favorites_first_order
from .logging_utils import LogMode, get_default_log_path, setup_logging
from .manifest import Manifest, ManifestError, load_manifest
from .platform_paths import get_state_path
from .session.controller import BoardController, BoardPhase, BoardStatus
from .session.coordinator import SessionCoordinator
from .session.storage import Prefs, SessionStorage, now_ms
from .session.store import JsonFileStore, KeyValueStore, MemoryStore

LOG_MODE_ENV_VAR = "BINGOBUZZ_LOG_MODE"
DEFAULT_MANIFEST = f"{DEFAULT_BASE_PATH}/{MANIFEST_FILENAME}"

logger = logging.getLogger(__name__)


def _add_logging_args(parser: argparse.ArgumentParser, *, suppress_defaults: bool = False) -> None:
    # Subcommands re-declare these with SUPPRESS so values given before the
    # subcommand are not overwritten by the subparser defaults
    def default(value: Any) -> Any:
        return argparse.SUPPRESS if suppress_defaults else value

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=default("WARNING"),
        help="Set log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-mode",
        choices=[mode.value for mode in LogMode],
        default=default(os.environ.get(LOG_MODE_ENV_VAR, LogMode.NORMAL.value)),
        help="Logging preset: quiet suppresses console info, perf forces DEBUG",
    )
    parser.add_argument(
        "--log-file",
        default=default(str(get_default_log_path())),
        help="Path to log file (default: per-user BingoBuzz directory)",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        default=default("plain"),
        help="Log format (plain or json)",
    )


def _build_logging_parent(*, suppress_defaults: bool = False) -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    _add_logging_args(parent, suppress_defaults=suppress_defaults)
    return parent


def _build_session_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--manifest",
        default=DEFAULT_MANIFEST,
        help=f"Manifest path or http(s) URL (default: {DEFAULT_MANIFEST})",
    )
    parent.add_argument(
        "--state",
        default=None,
        help="Session state file (default: per-user BingoBuzz directory)",
    )
    parent.add_argument(
        "--memory",
        action="store_true",
        help="Keep session state in memory only",
    )
    return parent


def build_parser() -> argparse.ArgumentParser:
    logging_parent = _build_logging_parent()
    sub_logging_parent = _build_logging_parent(suppress_defaults=True)
    session_parent = _build_session_parent()
    parser = argparse.ArgumentParser(
        prog="bingobuzz",
        description="BingoBuzz reaction sound board",
        parents=[logging_parent],
    )
    sub = parser.add_subparsers(dest="command", required=False)

    def add_subparser(name: str, **kwargs: Any) -> argparse.ArgumentParser:
        parents = list(kwargs.pop("parents", []))
        parents.insert(0, sub_logging_parent)
        return sub.add_parser(name, parents=parents, **kwargs)

    p_play = add_subparser("play", parents=[session_parent], help="Play clips from the session (default)")
    p_play.add_argument("--count", type=int, default=0, help="Stop after N clips (default: until all played)")
    p_play.add_argument("--max-seconds", type=float, default=None, help="Fade each clip out after N seconds")
    p_play.add_argument("--fade-ms", type=float, default=STOP_FADE_MS, help=f"Fade length in ms (default: {STOP_FADE_MS})")
    p_play.add_argument("--seed", type=int, default=None, help="Seed for a newly created order")
    p_play.add_argument("--fresh", action="store_true", help="Discard any persisted session first")
    p_play.add_argument(
        "--backend",
        choices=["auto", "sound", "stream"],
        default=None,
        help="Force a playback backend (default: capability probe)",
    )

    p_status = add_subparser("status", parents=[session_parent], help="Print the persisted session as JSON")
    p_status.add_argument("--fresh", action="store_true", help="Evaluate as if the fresh flag were set")

    p_order = add_subparser("order", parents=[session_parent], help="Preview a play order as JSON")
    p_order.add_argument("--seed", type=int, default=None, help="Shuffle seed (omit for a random order)")
    p_order.add_argument("--favorites-first", action="store_true", help="Put stored favorites first")

    add_subparser("reset", parents=[session_parent], help="Discard the persisted session")

    p_fav = add_subparser("favorites", parents=[session_parent], help="List or edit favorites and prefs")
    p_fav.add_argument("--add", action="append", default=[], metavar="ID", help="Add a clip id (repeatable)")
    p_fav.add_argument("--remove", action="append", default=[], metavar="ID", help="Remove a clip id (repeatable)")
    p_fav.add_argument("--favorites-first", choices=["on", "off"], default=None, help="Toggle favorites-first ordering")
    p_fav.add_argument("--auto-fade", type=float, default=None, metavar="SECONDS", help="Auto-fade after N seconds (0 disables)")
    p_fav.add_argument("--apply", action="store_true", help="Regenerate the session order with favorites first")

    add_subparser("selftest", help="Quick import and backend probe")
    return parser


def _make_store(args: argparse.Namespace) -> KeyValueStore:
    if getattr(args, "memory", False):
        return MemoryStore()
    return JsonFileStore(Path(args.state).expanduser() if args.state else get_state_path())


def _load_manifest(source: str) -> Optional[Manifest]:
    try:
        return asyncio.run(load_manifest(source))
    except ManifestError as exc:
        print(f"Manifest error: {exc}", file=sys.stderr)
        return None


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_status(status: BoardStatus) -> None:
    clip = f" [{status.clip.label}]" if status.clip is not None and status.phase is BoardPhase.PLAYING else ""
    print(f"{status.text}{clip}", flush=True)


async def _wait_for_quiet(engine: AudioEngine, max_seconds: Optional[float]) -> bool:
    """Wait until the engine stops playing; True when the time limit hit first."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_seconds if max_seconds else None
    while engine.state is AudioState.PLAYING:
        if deadline is not None and loop.time() >= deadline:
            return True
        await asyncio.sleep(0.05)
    while engine.state is AudioState.FADING:
        await asyncio.sleep(0.05)
    return False


async def _cli_play(args: argparse.Namespace, manifest: Manifest) -> int:
    storage = SessionStorage(_make_store(args), fresh=True if args.fresh else None)
    prefs = storage.load_prefs().prefs
    favorites = storage.load_favorites(manifest.ids).favorites
    engine = AudioEngine(backend=probe_backend(preference=args.backend))
    controller = BoardController(
        engine,
        SessionCoordinator(Playlist(), storage),
        prefs=prefs,
        stop_fade_ms=args.fade_ms,
    )
    controller.on_status(_print_status)
    controller.start(manifest, favorites=favorites, seed=args.seed)

    played = 0
    exit_code = 0
    try:
        while args.count <= 0 or played < args.count:
            if controller.status is not None and controller.status.phase in (
                BoardPhase.EXHAUSTED, BoardPhase.FAILED, BoardPhase.EMPTY,
            ):
                break
            if not await controller.play_next():
                if controller.status is not None and controller.status.phase is BoardPhase.BLOCKED:
                    exit_code = 2
                break
            played += 1
            if await _wait_for_quiet(engine, args.max_seconds):
                await controller.handle_action()
    except KeyboardInterrupt:
        logger.info("[cli] interrupted")
    finally:
        await controller.aclose()
    return exit_code


def _cli_status(args: argparse.Namespace, manifest: Manifest) -> int:
    storage = SessionStorage(_make_store(args), fresh=True if args.fresh else None)
    if manifest.ttl_ms:
        storage.set_ttl(manifest.ttl_ms)
    session = storage.load_session()
    decision = storage.should_reset(session, manifest.fingerprint)
    payload: dict[str, Any] = {
        "decision": {"reset": decision.reset, "reason": decision.reason},
        "persistent": storage.persistent,
        "ttl_ms": storage.ttl,
        "manifest": {"clips": len(manifest.clips), "fingerprint": manifest.fingerprint},
        "session": None,
    }
    if session is not None:
        payload["session"] = {
            "index": session.index,
            "total": len(session.playlist_ids),
            "remaining": max(len(session.playlist_ids) - session.index, 0),
            "created_at": session.created_at,
            "age_ms": max(now_ms() - session.created_at, 0),
            "manifest_fingerprint": session.manifest_fingerprint,
        }
    _print_json(payload)
    return 0


def _cli_order(args: argparse.Namespace, manifest: Manifest) -> int:
    if args.favorites_first:
        storage = SessionStorage(_make_store(args), fresh=False)
        favorites = storage.load_favorites(manifest.ids).favorites
        result = build_favorites_first_order(manifest.clips, favorites, args.seed)
        _print_json({
            "seed": args.seed,
            "order": result.order,
            "favorite_count": result.favorite_count,
            "rest_count": result.rest_count,
        })
        return 0
    playlist = Playlist()
    snapshot = playlist.init(list(manifest.clips), seed=args.seed)
    _print_json({"seed": snapshot.seed, "order": snapshot.order, "total": snapshot.total})
    return 0


def _cli_reset(args: argparse.Namespace) -> int:
    storage = SessionStorage(_make_store(args), fresh=False)
    storage.clear_session()
    print("Session cleared")
    return 0


def _cli_favorites(args: argparse.Namespace, manifest: Manifest) -> int:
    storage = SessionStorage(_make_store(args), fresh=False)
    valid_ids = manifest.ids
    fav_result = storage.load_favorites(valid_ids)
    favorites = list(fav_result.favorites)

    unknown = [clip_id for clip_id in args.add if clip_id not in valid_ids]
    for clip_id in unknown:
        print(f"Unknown clip id: {clip_id}", file=sys.stderr)
    for clip_id in args.add:
        if clip_id in valid_ids and clip_id not in favorites:
            favorites.append(clip_id)
    favorites = [clip_id for clip_id in favorites if clip_id not in set(args.remove)]
    if args.add or args.remove:
        storage.save_favorites(favorites)

    prefs = storage.load_prefs().prefs
    if args.favorites_first is not None or args.auto_fade is not None:
        prefs = Prefs(
            favorites_first=(args.favorites_first == "on") if args.favorites_first is not None else prefs.favorites_first,
            auto_fade_seconds=args.auto_fade if args.auto_fade is not None else prefs.auto_fade_seconds,
        )
        storage.save_prefs(prefs)

    applied = None
    if args.apply:
        coordinator = SessionCoordinator(Playlist(), storage)
        coordinator.bootstrap(manifest)
        order = coordinator.apply_favorites_first(favorites)
        applied = {"favorite_count": order.favorite_count, "rest_count": order.rest_count}

    _print_json({
        "favorites": favorites,
        "trimmed": fav_result.trimmed,
        "persistent": fav_result.persistent,
        "prefs": {"favorites_first": prefs.favorites_first, "auto_fade_seconds": prefs.auto_fade_seconds},
        "applied": applied,
    })
    return 1 if unknown else 0


def selftest() -> int:
    """Fast import-and-probe smoke test. Returns exit code."""
    try:
        import pygame
        import httpx  # noqa: F401

        from .engine.shuffler import fisher_yates_shuffle

        if fisher_yates_shuffle(range(10), 1) != fisher_yates_shuffle(range(10), 1):
            raise RuntimeError("seeded shuffle is not deterministic")
        backend = probe_backend(pygame.mixer)
        msg = f"Selftest OK: pygame {pygame.version.ver}, {backend.name} backend available"
        logging.getLogger(__name__).info(msg)
        print(msg)
        return 0
    except Exception as e:
        logging.getLogger(__name__).error("Selftest failed: %s", e)
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    raw_args = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(raw_args)

    # Configure logging before doing any work
    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
        json_format=(args.log_format == "json"),
        log_mode=args.log_mode,
        add_console=True,
    )

    cmd = args.command or "play"
    if cmd == "selftest":
        return selftest()
    if args.command is None:
        # Bare invocation: play with the session defaults
        args = parser.parse_args([*raw_args, "play"])
    if cmd == "reset":
        return _cli_reset(args)

    manifest = _load_manifest(args.manifest)
    if manifest is None:
        return 1
    if cmd == "play":
        return asyncio.run(_cli_play(args, manifest))
    if cmd == "status":
        return _cli_status(args, manifest)
    if cmd == "order":
        return _cli_order(args, manifest)
    if cmd == "favorites":
        return _cli_favorites(args, manifest)
    parser.error(f"unknown command {cmd!r}")
    return 2
