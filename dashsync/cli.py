#!/usr/bin/env python3
"""
dashsync: command-line front end for the task board and notes.

Each run signs in as --user, waits for the first snapshots, applies one
intent, waits for the store to settle and prints the reconciled view.

Usage:
    dashsync --user alice board
    dashsync --user alice add-task "Buy milk"
    dashsync --user alice advance task-1700000000000-1a2b3c4d todo
    dashsync --user alice add-note "wifi: hunter2" --category akun
    dashsync --user alice notes --category akun
    dashsync --backend sqlite --user alice board
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from .config import BACKENDS, DashConfig
from .errors import ConfigError
from .render import render_board, render_notes
from .schema import ColumnId, NoteCategory
from .session import DashboardSession, open_store

logger = logging.getLogger("dashsync")

COLUMNS = [c.value for c in ColumnId]
CATEGORIES = [c.value for c in NoteCategory]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dashsync",
        description="Personal dashboard: task board + categorized notes",
    )
    ap.add_argument("--config", default=None, help="Path to config.yaml")
    ap.add_argument("--user", default=None, help="Signed-in user id (overrides config)")
    ap.add_argument("--backend", choices=BACKENDS, default=None, help="Store backend (overrides config)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("board", help="Show the task board")

    p = sub.add_parser("add-task", help="Add a task to To Do")
    p.add_argument("text")

    p = sub.add_parser("move", help="Move a task between columns")
    p.add_argument("task_id")
    p.add_argument("from_column", choices=COLUMNS)
    p.add_argument("to_column", choices=COLUMNS)

    p = sub.add_parser("toggle", help="Tick/untick a task (done <-> todo)")
    p.add_argument("task_id")
    p.add_argument("column", choices=COLUMNS)

    p = sub.add_parser("advance", help="Move a task one column forward")
    p.add_argument("task_id")
    p.add_argument("column", choices=COLUMNS)

    p = sub.add_parser("delete-task", help="Delete a task from a column")
    p.add_argument("column", choices=COLUMNS)
    p.add_argument("task_id")

    p = sub.add_parser("notes", help="List notes")
    p.add_argument("--category", choices=CATEGORIES, default=None)

    p = sub.add_parser("add-note", help="Add a note")
    p.add_argument("text")
    p.add_argument("--category", choices=CATEGORIES, default=NoteCategory.CATATAN.value)

    p = sub.add_parser("delete-note", help="Delete a note by id")
    p.add_argument("note_id")

    return ap


def apply_command(session: DashboardSession, args: argparse.Namespace) -> int:
    """Send the intent for args.command. Returns an exit code."""
    d = session.dispatcher
    cmd = args.command

    if cmd == "add-task":
        task = d.add_task(args.text)
        if task is None:
            print("Nothing to add (empty text).", file=sys.stderr)
        return 0
    if cmd in ("move", "toggle", "advance"):
        if cmd == "move":
            moved = d.move_task(args.task_id, args.from_column, args.to_column)
            where = args.from_column
        elif cmd == "toggle":
            moved = d.toggle_task(args.task_id, args.column)
            where = args.column
        else:
            moved = d.advance_task(args.task_id, args.column)
            where = args.column
        if not moved:
            print(f"Task {args.task_id} not moved from {where}.", file=sys.stderr)
            return 1
        return 0
    if cmd == "delete-task":
        if not d.delete_task(args.column, args.task_id):
            print(f"Task {args.task_id} not found in {args.column}.", file=sys.stderr)
        return 0
    if cmd == "notes":
        session.set_category_filter(args.category)
        return 0
    if cmd == "add-note":
        note_id = d.add_note(args.text, args.category)
        if note_id is None:
            print("Nothing to add (empty text).", file=sys.stderr)
        return 0
    if cmd == "delete-note":
        d.delete_note(args.note_id)
        return 0
    return 0


def render(session: DashboardSession, command: str) -> str:
    if command in ("notes", "add-note", "delete-note"):
        return render_notes(session.state.notes_view)
    return render_board(session.state.board_view)


async def run(cfg: DashConfig, args: argparse.Namespace) -> int:
    store = open_store(cfg)
    try:
        async with DashboardSession(store, cfg) as session:
            await session.set_user(cfg.user_id)
            await session.wait_ready(timeout=cfg.http_timeout * 2)
            await session.settle()

            code = apply_command(session, args)
            await session.settle()
            if cfg.backend == "firestore":
                # Polled backends only see our writes on the next poll
                await asyncio.sleep(cfg.firestore_poll_interval)
                await session.settle()

            logger.debug(f"Synced state: {session.state.summary()}")
            print(render(session, args.command))

            for failure in session.writer.failures:
                print(f"Write failed ({failure.description}): {failure.error}", file=sys.stderr)
                code = 1
            return code
    finally:
        await store.aclose()


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = DashConfig.load(args.config)
        if args.backend:
            cfg.backend = args.backend
        if args.user:
            cfg.user_id = args.user
        cfg.validate()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    configure_logging("DEBUG" if args.verbose else cfg.log_level)

    if not cfg.user_id:
        print("No user signed in: pass --user or set DASHSYNC_USER.", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run(cfg, args))
    except asyncio.TimeoutError:
        logger.error("Timed out waiting for the store")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
