"""
hxa-connect: watch a bot's real-time event stream from the terminal.

Without --bot-name every server event is printed as one JSON line.
With --bot-name, thread messages are buffered and the prompt context is
printed each time the bot is @mentioned or invited.
"""
import argparse
import asyncio
import json
import logging
import sys

from hxa_connect.client import HxaConnectClient
from hxa_connect.config import ORG_ID, SERVER_URL, TOKEN
from hxa_connect.errors import ConnectError
from hxa_connect.protocol_guide import get_protocol_guide
from hxa_connect.thread_context import MentionTrigger, ThreadContext

logger = logging.getLogger("hxa_connect.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Listen to an HXA-Connect bot's events")
    parser.add_argument("--url", default=SERVER_URL, help="Server base URL")
    parser.add_argument("--token", default=TOKEN, help="Bot token (or HXA_CONNECT_TOKEN)")
    parser.add_argument("--org-id", default=ORG_ID, help="Org id sent as X-Org-Id")
    parser.add_argument(
        "--bot-name",
        action="append",
        default=[],
        help="Name that triggers delivery when @mentioned (repeatable)",
    )
    parser.add_argument(
        "--mode",
        choices=["summary", "full", "delta"],
        default="full",
        help="Prompt context mode printed on mention",
    )
    parser.add_argument("--guide", choices=["en", "zh"], help="Print the LLM protocol guide and exit")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


async def run(args: argparse.Namespace) -> None:
    async with HxaConnectClient(args.url, args.token, org_id=args.org_id) as client:
        client.on("reconnecting", lambda e: logger.info(f"Reconnecting: attempt {e['attempt']} in {e['delay']:.1f}s"))
        client.on("reconnected", lambda e: logger.info("Reconnected; events sent while offline were not replayed"))
        client.on("reconnect_failed", lambda e: logger.error(f"Reconnect failed after {e['attempts']} attempt(s)"))
        client.on("error", lambda err: logger.warning(f"Client error: {err!r}"))

        if args.bot_name:
            ctx = ThreadContext(client, bot_names=args.bot_name)

            def print_context(trigger: MentionTrigger) -> None:
                print(ctx.to_prompt_context(trigger.thread_id, args.mode), flush=True)
                print("-" * 60, flush=True)

            ctx.on_mention(print_context)
            await ctx.start()
        else:
            client.on("*", lambda event: print(json.dumps(event.model_dump(by_alias=True)), flush=True))

        await client.connect()
        logger.info(f"Listening on {args.url} (Ctrl+C to stop)")
        await asyncio.Event().wait()


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.guide:
        print(get_protocol_guide(args.guide))
        return
    if not args.token:
        parser.error("a bot token is required (--token or HXA_CONNECT_TOKEN)")

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass
    except ConnectError as exc:
        logger.error(str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
