"""Command line entry point.

Usage:
    python -m captcha_relay solve [--cdp-url URL] [--timeout 120] [--buttons]
    python -m captcha_relay annotate IMAGE [--cols 3] [--rows 3]
    python -m captcha_relay test
    python -m captcha_relay relay-file [--input PATH] [--output PATH]

Results go to stdout as one JSON object; failures exit with status 1.
Configuration errors go to stderr as JSON and exit with status 2.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from captcha_relay._annotate import AnnotationSpec, annotate, annotate_with_prompt
from captcha_relay._channel import RelayChannel
from captcha_relay._config import RelayConfig
from captcha_relay._errors import (
    BackendError,
    BrowserUnavailable,
    ConfigurationError,
    RelayError,
)
from captcha_relay._interchange import DEFAULT_INPUT, DEFAULT_OUTPUT, relay_file
from captcha_relay._relay import ERR_NO_CHALLENGE, ERR_SEND, CaptchaRelay, SolveResult
from captcha_relay._retry import solve_with_retries
from captcha_relay._telegram import TelegramBackend
from captcha_relay.browser._connect import (
    DEFAULT_CDP_PORT,
    cdp_endpoint,
    connect_over_cdp,
)
from captcha_relay.browser._detector import wait_for_challenge

logger = logging.getLogger("captcha_relay")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _emit(payload: dict, stream=None) -> None:
    print(json.dumps(payload, ensure_ascii=False), file=stream or sys.stdout)


def _channel(config: RelayConfig) -> RelayChannel:
    config.require_credentials()
    return RelayChannel(TelegramBackend(config.bot_token), config.chat_id)


def _config(args) -> RelayConfig:
    config = RelayConfig.from_env(args.config)
    if args.bot_token:
        config.bot_token = args.bot_token
    if args.chat_id:
        config.chat_id = args.chat_id
    if args.timeout is not None:
        config.timeout = args.timeout
    return config


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_solve(args) -> int:
    config = _config(args)
    channel = _channel(config)
    endpoint = args.cdp_url or config.cdp_url or cdp_endpoint(args.cdp_port)

    relay = CaptchaRelay(
        channel,
        timeout=config.timeout,
        interactive=args.buttons,
        inject=not args.no_inject,
    )
    try:
        with connect_over_cdp(endpoint) as page:
            if wait_for_challenge(page, timeout=args.detect_timeout) is None:
                result = SolveResult(success=False, error=ERR_NO_CHALLENGE)
            else:
                result = solve_with_retries(
                    relay,
                    page,
                    max_attempts=args.max_attempts,
                    kind=args.type,
                    columns=args.cols,
                    rows=args.rows,
                )
    except (BrowserUnavailable, ImportError) as e:
        _emit({"success": False, "error": str(e)})
        return EXIT_FAILED

    _emit(result.to_dict())
    return EXIT_OK if result.success else EXIT_FAILED


def cmd_annotate(args) -> int:
    spec = AnnotationSpec(columns=args.cols or 3, rows=args.rows or 3)
    image = args.image.read_bytes()
    if args.prompt:
        out = annotate_with_prompt(image, args.prompt, spec)
    else:
        out = annotate(image, spec)

    target = args.output or args.image.with_name(
        f"{args.image.stem}.annotated{args.image.suffix or '.png'}"
    )
    target.write_bytes(out)
    _emit({"output": str(target)})
    return EXIT_OK


def cmd_test(args) -> int:
    config = _config(args)
    channel = _channel(config)
    try:
        channel.send_text_message(
            "🔓 captcha-relay test! Reply with any message to confirm "
            "the relay is working."
        )
    except BackendError:
        logger.warning("Could not send test message", exc_info=True)
        _emit({"success": False, "error": ERR_SEND})
        return EXIT_FAILED
    reply = channel.wait_for_text_reply(config.timeout)
    if reply is None:
        _emit({"success": False, "error": "timeout"})
        return EXIT_FAILED
    _emit({"success": True, "reply": reply})
    return EXIT_OK


def cmd_relay_file(args) -> int:
    config = _config(args)
    channel = _channel(config)
    result = relay_file(args.input, args.output, channel, config.timeout)
    _emit(result)
    return EXIT_FAILED if "error" in result else EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--bot-token", help="Telegram bot token")
    common.add_argument("--chat-id", help="Telegram chat that gets challenges")
    common.add_argument("--config", help="JSON config file")
    common.add_argument(
        "--timeout", type=float, default=None,
        help="Seconds to wait for the human (default: 120)",
    )
    common.add_argument(
        "-v", "--verbose", action="store_true", help="Log to stderr",
    )

    parser = argparse.ArgumentParser(
        prog="captcha-relay",
        description="Relay CAPTCHAs to a human over Telegram",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    solve = sub.add_parser(
        "solve", parents=[common], help="Solve the challenge in a running browser",
    )
    solve.add_argument("--cdp-url", help="DevTools endpoint (overrides --cdp-port)")
    solve.add_argument(
        "--cdp-port", type=int, default=DEFAULT_CDP_PORT, help="DevTools port",
    )
    solve.add_argument(
        "--detect-timeout", type=float, default=30.0,
        help="Seconds to wait for a challenge to appear",
    )
    solve.add_argument(
        "--no-inject", action="store_true",
        help="Only report the answer, do not touch the page",
    )
    solve.add_argument("--cols", type=int, help="Grid columns")
    solve.add_argument("--rows", type=int, help="Grid rows")
    solve.add_argument(
        "--type", default="auto",
        choices=["auto", "grid", "text", "checkbox"],
        help="Challenge kind (default: infer from the page)",
    )
    solve.add_argument("--max-attempts", type=int, default=5)
    solve.add_argument(
        "--buttons", action="store_true",
        help="Tappable cell buttons instead of a typed reply",
    )
    solve.set_defaults(func=cmd_solve)

    ann = sub.add_parser(
        "annotate", parents=[common], help="Number the grid cells of a local image",
    )
    ann.add_argument("image", type=Path)
    ann.add_argument("--cols", type=int, default=3)
    ann.add_argument("--rows", type=int, default=3)
    ann.add_argument("--prompt", help="Banner text above the grid")
    ann.add_argument("-o", "--output", type=Path)
    ann.set_defaults(func=cmd_annotate)

    test = sub.add_parser(
        "test", parents=[common], help="Send a test message and wait for a reply",
    )
    test.set_defaults(func=cmd_test)

    rf = sub.add_parser(
        "relay-file", parents=[common],
        help="Relay a screenshot described by a JSON input file",
    )
    rf.add_argument("--input", default=DEFAULT_INPUT)
    rf.add_argument("--output", default=DEFAULT_OUTPUT)
    rf.set_defaults(func=cmd_relay_file)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            stream=sys.stderr,
            level=logging.DEBUG,
            format="%(asctime)s %(name)-8s %(levelname)-7s %(message)s",
        )
    try:
        return args.func(args)
    except ConfigurationError as e:
        _emit({"error": str(e), "setting": e.setting}, stream=sys.stderr)
        return EXIT_CONFIG
    except (RelayError, OSError, ValueError, KeyError) as e:
        logger.debug("%s failed", args.command, exc_info=True)
        _emit({"success": False, "error": str(e)})
        return EXIT_FAILED
