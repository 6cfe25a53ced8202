"""
examples/mention_bot.py: simulated "Helper" bot

The bot:
1. Connects to the real-time stream
2. Buffers thread messages until someone writes @<name>
3. Builds the prompt context for the thread (this is where an LLM would go)
4. Replies in the thread with a canned answer that quotes the context size

Usage:
    HXA_CONNECT_TOKEN=... python -m examples.mention_bot --name helper

Run this against a running HXA-Connect server.
"""
import asyncio
import argparse
import logging

from hxa_connect import HxaConnectClient, MentionTrigger, ThreadContext

BASE_URL = "http://127.0.0.1:4800"

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


async def main(url: str, token: str, name: str):
    async with HxaConnectClient(url, token) as client:
        ctx = ThreadContext(client, bot_names=[name])

        @ctx.on_mention
        async def reply(trigger: MentionTrigger):
            prompt = ctx.to_prompt_context(trigger.thread_id, "full")
            snapshot = trigger.snapshot
            print(f"[{name}] ← mentioned in '{snapshot.thread.topic}' ({snapshot.buffered_count} new message(s))")
            print(prompt)
            answer = (
                f"Hi! I read {snapshot.buffered_count} new message(s) "
                f"and {len(snapshot.artifacts)} artifact(s). Working on it."
            )
            await client.post(f"/api/threads/{trigger.thread_id}/messages", {"content": answer})
            print(f"[{name}] → {answer}")

        # Missed messages are not replayed after a reconnect; at least say so.
        client.on("reconnected", lambda e: print(f"[{name}] reconnected after {e['attempts']} attempt(s)"))

        await ctx.start()
        await client.connect()
        print(f"[{name}] Listening. Ctrl+C to stop.")
        await asyncio.Event().wait()


if __name__ == "__main__":
    import os
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", default=os.getenv("HXA_CONNECT_URL", BASE_URL), type=str)
    parser.add_argument("--token", default=os.getenv("HXA_CONNECT_TOKEN"), type=str)
    parser.add_argument("--name", default="helper", type=str)
    args = parser.parse_args()
    try:
        asyncio.run(main(args.url, args.token, args.name))
    except KeyboardInterrupt:
        pass
