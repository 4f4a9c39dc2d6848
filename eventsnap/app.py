"""
Main entry point for the EventSnap command line.

    eventsnap scan flyer.jpg          # extract events and review them one by one
    eventsnap scan --clipboard        # use the image on the clipboard
    eventsnap scan flyer.jpg --json   # print the extracted events and exit
    eventsnap relay --port 3000       # run the HTTP relay
    eventsnap config --transport relay  # save the default transport
"""

import argparse
import dataclasses
import json
import os
import sys
import time
from typing import Callable, List, Optional

from eventsnap.calendar_link import open_calendar_url
from eventsnap.errors import ConfigurationError
from eventsnap.extractor import EventExtractor
from eventsnap.image_capture import grab_clipboard_image, load_image_file
from eventsnap.image_llm_client import get_llm_client
from eventsnap.logging_helper import Log
from eventsnap.review_session import AppState, ReviewSession
from eventsnap.settings_manager import TRANSPORT_MODES, get_app_config, set_transport, settings_file

MENU = "[s]ave  [d]iscard  [e]dit  [r]ecurrence  [a]ll-day  [q]uit > "
EDITABLE = ("title", "location", "description", "start", "end")


def _show_card(session: ReviewSession, echo: Callable[[str], None]) -> None:
    editor = session.front_editor()
    event = editor.event
    echo("")
    echo(f"--- {session.remaining} left ---")
    echo(f"Title:       {event.title}")
    echo(f"Starts:      {editor.start_input or '(not set)'}")
    echo(f"Ends:        {editor.end_input or '(not set)'}")
    echo(f"All-day:     {'yes' if editor.all_day else 'no'}")
    echo(f"Location:    {event.location}")
    echo(f"Description: {event.description}")
    if editor.recurrence_enabled:
        echo(f"Repeats:     every {editor.recurrence_interval} x {editor.recurrence_unit}")
    for _, upcoming, _ in session.visible_stack()[1:]:
        echo(f"  next: {upcoming.title}")


def _edit(session: ReviewSession, prompt: Callable[[str], str], echo: Callable[[str], None]) -> None:
    editor = session.front_editor()
    field = prompt(f"Field ({'/'.join(EDITABLE)}) > ").strip().lower()
    if field not in EDITABLE:
        echo(f"Unknown field: {field}")
        return
    value = prompt("Value > ")
    if field == "start":
        editor.set_start_input(value.strip())
    elif field == "end":
        editor.set_end_input(value.strip())
    else:
        editor.set_field(field, value)


def _edit_recurrence(session: ReviewSession, prompt: Callable[[str], str], echo: Callable[[str], None]) -> None:
    editor = session.front_editor()
    unit = prompt("Repeat (daily/weekly/monthly/yearly/none) > ").strip().upper()
    if unit == "NONE" or not unit:
        editor.set_recurrence(enabled=False)
        return
    interval_text = prompt("Every how many? > ").strip() or "1"
    try:
        editor.set_recurrence(enabled=True, unit=unit, interval=int(interval_text))
    except ValueError as e:
        echo(f"Invalid recurrence: {e}")


def review_loop(
    session: ReviewSession,
    prompt: Callable[[str], str] = input,
    echo: Callable[[str], None] = print,
) -> bool:
    """
    Walk the review queue interactively.

    Returns:
        True when every candidate was handled, False if the user quit early
    """
    while not session.is_complete:
        _show_card(session, echo)
        choice = prompt(MENU).strip().lower()
        if choice == "s":
            url = session.commit()
            if url:
                echo("Saved")
                echo(url)
            while session.saved_index is not None:
                time.sleep(0.05)
        elif choice == "d":
            session.discard()
        elif choice == "e":
            _edit(session, prompt, echo)
        elif choice == "r":
            _edit_recurrence(session, prompt, echo)
        elif choice == "a":
            editor = session.front_editor()
            editor.set_all_day(not editor.all_day)
        elif choice == "q":
            return False
    echo("All done! Your calendar is up to date.")
    return True


def _print_link(url: str) -> bool:
    print(url)
    return True


def run_scan(args: argparse.Namespace) -> int:
    try:
        config = get_app_config()
        if args.transport:
            config = dataclasses.replace(config, transport=args.transport)
        client = get_llm_client(config)
    except ConfigurationError as e:
        Log.error(f"Configuration error: {e}")
        return 2

    try:
        image = grab_clipboard_image() if args.clipboard else load_image_file(args.image)
    except (OSError, ValueError) as e:
        Log.error(f"Capture failed: {e}")
        return 1
    if image is None:
        Log.error("No image to scan")
        return 1

    session = ReviewSession(
        extractor=EventExtractor(client),
        link_opener=_print_link if args.no_browser else open_calendar_url,
        calendar_host=config.calendar_host,
    )
    try:
        print("Reading details... this might take a moment")
        session.capture(image)
        session.wait_for_extraction()

        if session.state == AppState.ERROR:
            print(session.error_message)
            return 1

        if args.json:
            print(json.dumps([event.to_wire() for event in session.events], indent=2))
            return 0

        if not session.events:
            print("No events found in this image.")
            return 0
        review_loop(session)
        return 0
    finally:
        session.reset()


def run_relay(args: argparse.Namespace) -> int:
    import uvicorn

    from eventsnap.relay_server import create_app

    try:
        app = create_app()
    except ConfigurationError as e:
        Log.error(f"Relay not started: {e}")
        return 2

    Log.info(f"Relay listening on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def run_config(args: argparse.Namespace) -> int:
    if args.transport:
        set_transport(args.transport)
    try:
        config = get_app_config()
    except ConfigurationError as e:
        Log.error(f"Configuration error: {e}")
        return 2
    print(f"transport: {config.transport}")
    print(f"model: {config.model}")
    print(f"relay_url: {config.relay_url}")
    print(f"settings: {settings_file()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eventsnap", description="Turn event flyers into calendar entries")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Extract events from an image and review them")
    source = scan.add_mutually_exclusive_group(required=True)
    source.add_argument("image", nargs="?", help="Path to the image file")
    source.add_argument("--clipboard", action="store_true", help="Use the image on the clipboard")
    scan.add_argument("--transport", choices=TRANSPORT_MODES, help="Override the configured transport")
    scan.add_argument("--json", action="store_true", help="Print extracted events as JSON and exit")
    scan.add_argument("--no-browser", action="store_true", help="Print calendar links instead of opening them")
    scan.set_defaults(handler=run_scan)

    relay = subparsers.add_parser("relay", help="Run the HTTP relay")
    relay.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    relay.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "3000")),
        help="Port to bind to (default: $PORT or 3000)",
    )
    relay.set_defaults(handler=run_relay)

    config = subparsers.add_parser("config", help="Show or change saved settings")
    config.add_argument("--transport", choices=TRANSPORT_MODES, help="Save the default transport")
    config.set_defaults(handler=run_config)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the app."""
    args = build_parser().parse_args(argv)
    Log.section("EventSnap")
    Log.info(f"Log file: {Log.get_log_path()}")
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
