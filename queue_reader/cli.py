"""CLI interface with subcommand routing and the interactive player."""

import argparse
import asyncio
import json
import logging
import os
import sys

from queue_reader.constants import HEADING_MODES, SKIP_CHOICES, VERSION
from queue_reader.controller import QueueController
from queue_reader.device import EdgeTTSDevice
from queue_reader.errors import QueueReaderError, UnsupportedDeviceError
from queue_reader.estimator import format_time, text_stats
from queue_reader.scheduler import AsyncioScheduler, Scheduler
from queue_reader.storage import read_json, resolve_state_path
from queue_reader.voices import filter_voices, load_voices

logger = logging.getLogger(__name__)

PLAYER_HELP = (
    "Commands (type + Enter): p pause/resume · n/b next/prev sentence · "
    "f/r seek forward/back · N/B next/prev item · s stop · q quit"
)


def _fail(message: str):
    print(f"Error: {message}", file=sys.stderr)
    raise SystemExit(1)


def _notify(kind: str, message: str) -> None:
    stream = sys.stderr if kind == "error" else sys.stdout
    print(f"[{kind}] {message}", file=stream)


def _open_controller(args, device=None, scheduler=None) -> QueueController:
    """Controller for offline commands; no timers are ever armed on it."""
    return QueueController(
        device or EdgeTTSDevice(),
        scheduler or Scheduler(),
        resolve_state_path(args.state),
        notify=_notify,
    )


def _find(controller: QueueController, ref: str):
    try:
        return controller.find(ref)
    except QueueReaderError as e:
        _fail(str(e))


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    if not os.path.exists(path):
        _fail(f"File not found: {path}")
    with open(path) as f:
        return f.read()


def cmd_add(args):
    """Add text from a file (or stdin) to the front of the queue."""
    controller = _open_controller(args)
    text = _read_text(args.file)
    source = {"type": "paste"} if args.file == "-" else {"type": "file", "path": os.path.abspath(args.file)}
    try:
        item = controller.add_text(
            text,
            title=args.title,
            language_hint=args.lang or "",
            heading_mode=args.heading_mode,
            cleanup=not args.no_cleanup,
            source=source,
        )
    except QueueReaderError as e:
        _fail(str(e))
    words, seconds = text_stats(item.text, controller.rate)
    print(f"Added: {item.title} ({words} words, ~{format_time(seconds)})")
    print(f"Id: {item.id[:8]}")


def cmd_list(args):
    """List queued items."""
    controller = _open_controller(args)
    if not controller.queue:
        print("Queue is empty.")
        return
    current = controller.current_item()
    print("Queue:")
    for i, item in enumerate(controller.queue, start=1):
        words, seconds = text_stats(item.text, controller.rate)
        marker = ">" if item is current else " "
        print(f" {marker} {i:>2}. {item.id[:8]}  {item.title:<40.40} {words:>6} words  ~{format_time(seconds)}")


def cmd_remove(args):
    controller = _open_controller(args)
    item = _find(controller, args.id)
    controller.remove(item.id)
    print(f"Removed: {item.title}")


def cmd_move(args):
    controller = _open_controller(args)
    item = _find(controller, args.id)
    position = controller.move(item.id, -1 if args.direction == "up" else 1)
    print(f"Moved: {item.title} → position {position + 1}")


def cmd_edit(args):
    """Change an item's title and/or text."""
    controller = _open_controller(args)
    item = _find(controller, args.id)
    text = _read_text(args.file) if args.file else None
    if args.title is None and text is None:
        _fail("'edit' requires --title and/or --file")
    try:
        controller.edit(item.id, title=args.title, text=text)
    except QueueReaderError as e:
        _fail(str(e))
    print(f"Updated: {item.title}")


def cmd_clear(args):
    controller = _open_controller(args)
    if not args.yes and sys.stdin.isatty():
        response = input(f"Remove all {len(controller.queue)} items? [y/N] ").strip().lower()
        if response != "y":
            print("Cancelled.")
            return
    controller.clear()
    print("Queue cleared.")


def cmd_set(args):
    """Update a persistent setting."""
    controller = _open_controller(args)
    key = args.key
    values = args.values

    valid_keys = {"rate", "skip", "voice", "heading-mode", "dict"}
    if key not in valid_keys:
        print(f"Error: Invalid setting key: {key}", file=sys.stderr)
        print(f"Valid keys: {', '.join(sorted(valid_keys))}", file=sys.stderr)
        raise SystemExit(1)

    if key == "rate":
        if not values:
            _fail("'set rate' requires <float>")
        try:
            rate = float(values[0])
        except ValueError:
            _fail(f"Invalid rate: {values[0]}")
        print(f"Updated: rate → {controller.set_rate(rate):.2f}")

    elif key == "skip":
        if not values or values[0] not in {str(s) for s in SKIP_CHOICES}:
            _fail(f"'set skip' requires one of {', '.join(str(s) for s in SKIP_CHOICES)}")
        print(f"Updated: skip → {controller.set_skip(values[0])}s")

    elif key == "voice":
        voice_id = values[0] if values else ""
        controller.set_voice(voice_id)
        print(f"Updated: voice → {voice_id or 'default'}")

    elif key == "heading-mode":
        if not values or values[0] not in HEADING_MODES:
            _fail(f"'set heading-mode' requires one of {', '.join(HEADING_MODES)}")
        print(f"Updated: heading mode → {controller.set_heading_mode(values[0])}")

    elif key == "dict":
        # Each value is one "from => to" line; no values clears the dictionary
        pairs = controller.set_dictionary("\n".join(values))
        print(f"Updated: dictionary → {len(pairs)} entries")


def cmd_voices(args):
    """List available voices."""
    voices = asyncio.run(load_voices(EdgeTTSDevice()))
    voices = filter_voices(voices, args.filter)
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v.id:<32} {v.lang:<8} {v.gender}")


def cmd_export(args):
    controller = _open_controller(args)
    with open(args.file, "w") as f:
        json.dump(controller.export_items(), f, indent=2)
    print(f"Exported {len(controller.queue)} items to {args.file}")


def cmd_import(args):
    controller = _open_controller(args)
    if not os.path.exists(args.file):
        _fail(f"File not found: {args.file}")
    try:
        count = controller.import_items(read_json(args.file))
    except QueueReaderError as e:
        _fail(str(e))
    print(f"Imported {count} items.")


def cmd_stats(args):
    """Show queue length, time remaining, and listening totals."""
    controller = _open_controller(args)
    stats = controller.stats()
    current = controller.current_item()
    print(f"Items:      {stats['items']}")
    print(f"Remaining:  {format_time(stats['remaining'])}")
    print(f"Today:      {format_time(stats['today'])}")
    print(f"Rate:       {controller.rate:.2f}x")
    if current is not None:
        print(f"Resume at:  {current.title} (unit {controller.playback.get('unit_index', 0) + 1})")


class _Player:
    """Terminal front end for one play session."""

    def __init__(self, controller: QueueController, done: asyncio.Event):
        self.controller = controller
        self.done = done

    def on_event(self, event) -> None:
        if event.type == "unit":
            progress = self.controller.engine.progress()
            print(f"[{format_time(progress.elapsed)} / {format_time(progress.total)}] {event.text}")
        elif event.type == "playing":
            item = self.controller.current_item()
            print(f"▶ {item.title if item else ''}")
        elif event.type in ("paused", "resumed"):
            print(f"({event.type})")
        elif event.type == "seeked":
            print(f"(seek → {format_time(event.progress.elapsed)})")
        elif event.type == "error":
            print("Press p to retry or q to quit.")
        elif event.type == "stopped":
            self.done.set()

    def on_input(self) -> None:
        line = sys.stdin.readline()
        if not line:
            asyncio.get_running_loop().remove_reader(sys.stdin.fileno())
            return
        command = line.strip()
        actions = {
            "p": self.controller.toggle_play,
            "": self.controller.toggle_play,
            "n": self.controller.next_sentence,
            "b": self.controller.prev_sentence,
            "f": lambda: self.controller.seek(1),
            "r": lambda: self.controller.seek(-1),
            "N": self.controller.next_item,
            "B": self.controller.prev_item,
            "s": self.controller.shutdown,
            "q": self.controller.shutdown,
        }
        action = actions.get(command)
        if action is None:
            print(PLAYER_HELP)
            return
        action()


async def _play_session(args) -> None:
    loop = asyncio.get_running_loop()
    controller = _open_controller(args, scheduler=AsyncioScheduler(loop))
    try:
        controller.require_device()
    except UnsupportedDeviceError as e:
        _fail(str(e))
    if not controller.queue:
        _fail("Queue is empty. Run 'queue-reader add <file>' first.")

    if args.rate is not None:
        controller.set_rate(args.rate)
    if args.sleep:
        if args.sleep == "end":
            controller.set_sleep("end")
        else:
            try:
                controller.set_sleep("minutes", float(args.sleep))
            except ValueError:
                _fail(f"Invalid sleep value: {args.sleep}")
    controller.start()
    logger.debug("Play session: %d queued, rate %.2f, sleep %s", len(controller.queue), controller.rate, controller.sleep.mode)

    done = asyncio.Event()
    player = _Player(controller, done)
    controller.listeners.append(player.on_event)
    print(PLAYER_HELP)

    if args.item:
        controller.play_item(_find(controller, args.item), 0)
    else:
        controller.toggle_play()

    loop.add_reader(sys.stdin.fileno(), player.on_input)
    try:
        await done.wait()
    finally:
        loop.remove_reader(sys.stdin.fileno())
        if controller.engine.active:
            controller.shutdown()
        print(controller.status)


def cmd_play(args):
    """Play the queue interactively."""
    asyncio.run(_play_session(args))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="queue-reader",
        description="Queue Reader — queue long-form text and listen to it read aloud",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--state", help="Path to the state file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add
    add_parser = subparsers.add_parser("add", help="Add text from a file ('-' for stdin)")
    add_parser.add_argument("file", nargs="?", default="-", help="Text file path, or '-' for stdin")
    add_parser.add_argument("--title", help="Display title (default: first line)")
    add_parser.add_argument("--lang", help="Language hint, e.g. en-GB")
    add_parser.add_argument("--heading-mode", choices=HEADING_MODES, help="How headings are read")
    add_parser.add_argument("--no-cleanup", action="store_true", help="Keep the text exactly as given")
    add_parser.set_defaults(func=cmd_add)

    # list
    list_parser = subparsers.add_parser("list", help="List the queue")
    list_parser.set_defaults(func=cmd_list)

    # remove
    remove_parser = subparsers.add_parser("remove", help="Remove an item")
    remove_parser.add_argument("id", help="Item id (or unique prefix)")
    remove_parser.set_defaults(func=cmd_remove)

    # move
    move_parser = subparsers.add_parser("move", help="Move an item up or down")
    move_parser.add_argument("id", help="Item id (or unique prefix)")
    move_parser.add_argument("direction", choices=("up", "down"))
    move_parser.set_defaults(func=cmd_move)

    # edit
    edit_parser = subparsers.add_parser("edit", help="Edit an item's title or text")
    edit_parser.add_argument("id", help="Item id (or unique prefix)")
    edit_parser.add_argument("--title", help="New title")
    edit_parser.add_argument("--file", help="File with the new text ('-' for stdin)")
    edit_parser.set_defaults(func=cmd_edit)

    # clear
    clear_parser = subparsers.add_parser("clear", help="Remove every item")
    clear_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    clear_parser.set_defaults(func=cmd_clear)

    # set
    set_parser = subparsers.add_parser("set", help="Update settings")
    set_parser.add_argument("key", help="Setting key")
    set_parser.add_argument("values", nargs="*", help="Setting value(s)")
    set_parser.set_defaults(func=cmd_set)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    # export / import
    export_parser = subparsers.add_parser("export", help="Export the queue as JSON")
    export_parser.add_argument("file", help="Output path")
    export_parser.set_defaults(func=cmd_export)
    import_parser = subparsers.add_parser("import", help="Replace the queue from a JSON export")
    import_parser.add_argument("file", help="Input path")
    import_parser.set_defaults(func=cmd_import)

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show queue and listening stats")
    stats_parser.set_defaults(func=cmd_stats)

    # play
    play_parser = subparsers.add_parser("play", help="Play the queue")
    play_parser.add_argument("item", nargs="?", help="Start with this item (id or prefix)")
    play_parser.add_argument("--rate", type=float, help="Playback rate (0.75–2.0)")
    play_parser.add_argument("--sleep", help="Sleep timer: minutes, or 'end' for end of item")
    play_parser.set_defaults(func=cmd_play)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
