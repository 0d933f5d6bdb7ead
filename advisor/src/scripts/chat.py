from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from advisor.src.config import ChatClientConfig, configure_logging
from advisor.src.engine.chat_client import ChatCompletionClient
from advisor.src.engine.errors import ConfigurationError
from advisor.src.engine.events import Completed, Delta, Failed
from advisor.src.services.chat_manager import ChatManager
from advisor.src.services.conversation_store import ConversationStore
from advisor.src.services.json_store import JsonConversationStore, get_default_store

logger = logging.getLogger(__name__)


async def _list(store: ConversationStore, query: str | None = None) -> int:
    for conversation in await store.load():
        if query and not conversation.matches(query):
            continue
        print(f"{conversation.id}  {conversation.updated_at:%Y-%m-%d %H:%M}  {conversation.title}")
    return 0


async def _print_reply(manager: ChatManager, content: str) -> None:
    async for update in manager.stream_message(content):
        event = update.event
        if isinstance(event, Delta):
            print(event.text, end="", flush=True)
        elif isinstance(event, Completed):
            print()
        elif isinstance(event, Failed):
            print(f"\n[error] {event.error.user_message}", file=sys.stderr)


def _install_interrupt_handler(manager: ChatManager) -> set[asyncio.Task]:
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()

    def _on_interrupt() -> None:
        if manager.is_loading:
            task = loop.create_task(manager.cancel_current_request())
            pending.add(task)
            task.add_done_callback(pending.discard)
            print("\n[cancelled]")
        else:
            print("\n(press Ctrl-D to quit)")

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported on this platform")
    return pending


async def _run(args: argparse.Namespace) -> int:
    store = JsonConversationStore(args.data_file) if args.data_file else get_default_store()
    if args.list or args.search:
        return await _list(store, args.search)

    try:
        client = ChatCompletionClient(ChatClientConfig.from_env())
    except ConfigurationError as e:
        print(e.message, file=sys.stderr)
        return 2

    async with client:
        manager = ChatManager(client, store)
        await manager.load()
        if args.new:
            await manager.create_conversation()
        elif args.conversation:
            try:
                manager.select_conversation(args.conversation)
            except KeyError:
                print(f"Conversation {args.conversation} not found", file=sys.stderr)
                return 1

        cancels = _install_interrupt_handler(manager)
        print(f"# {manager.current.title}  ({manager.current.id})")
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                print()
                return 0
            await _print_reply(manager, line)
            if cancels:
                await asyncio.gather(*cancels)


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the configured model from the terminal.")
    parser.add_argument("--list", action="store_true", help="List saved conversations and exit.")
    parser.add_argument("--search", default=None, help="List conversations whose title or messages contain this text.")
    parser.add_argument("--new", action="store_true", help="Start a new conversation.")
    parser.add_argument("--conversation", default=None, help="Resume the conversation with this id.")
    parser.add_argument("--data-file", default=None, help="Path of the conversations JSON file.")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()
    configure_logging(args.log_level or "WARNING")
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
