"""CLI entry point for the chat engine.

Usage:
    freechat chat                          # new conversation
    freechat chat --conversation <id>      # continue a conversation
    freechat --config freechat.yaml chat
    freechat list                          # print the folder tree

Inside a chat, ``/new`` starts a fresh conversation and ``/quit``
(or Ctrl-D) exits.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from freechat.adapters.event_bus import EventBus
from freechat.adapters.events import ChatEvent, MessageDeleted, PartialOutputAppended
from freechat.shared.services.persistence import StorePersistence
from freechat.shared.services.store import ChatStore

from .config import ChatConfig
from .errors import AgentBusyError, ChannelError, FreeChatError
from .manager import ConversationManager
from .yaml_config import load_yaml_config

logger = logging.getLogger(__name__)

console = Console(highlight=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="freechat",
        description="Chat with a local llama.cpp model from the terminal",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file layered over FREECHAT_* env vars",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="llama.cpp server host (default: from config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="llama.cpp server port (default: 8690)",
    )
    parser.add_argument(
        "--tls",
        action="store_true",
        help="Talk to the server over https",
    )
    parser.add_argument(
        "--system-prompt",
        default=None,
        help="System prompt for conversations outside any folder",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory holding store.json (default: ~/.freechat)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command")
    chat = sub.add_parser("chat", help="Start or continue a conversation")
    chat.add_argument(
        "--conversation",
        default=None,
        help="Id of an existing conversation to continue",
    )
    sub.add_parser("list", help="Print folders and conversations")
    return parser


def build_config(args: argparse.Namespace) -> ChatConfig:
    """Env config, then the YAML file, then command-line flags."""
    if args.config:
        config = load_yaml_config(args.config)
    else:
        config = ChatConfig.from_env()
    if args.host is not None:
        config.server_host = args.host
    if args.port is not None:
        config.server_port = args.port
    if args.tls:
        config.server_tls = True
    if args.system_prompt is not None:
        config.system_prompt = args.system_prompt
    if args.data_dir is not None:
        config.data_dir = args.data_dir
    return config


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except FreeChatError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    # Configure logging
    level = logging.DEBUG if args.verbose else getattr(
        logging, config.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    command = args.command or "chat"
    try:
        if command == "list":
            asyncio.run(_list(config))
        else:
            asyncio.run(_chat(config, getattr(args, "conversation", None)))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(1)
    except FreeChatError as exc:
        print(f"Error: {exc}")
        sys.exit(1)


def _open_manager(config: ChatConfig) -> ConversationManager:
    store = ChatStore(StorePersistence(config.store_path))
    return ConversationManager(store, config)


# ── list ──


def _add_folder(node: Tree, folder) -> None:
    branch = node.add(f"[bold]{escape(folder.name)}[/bold]")
    for sub in folder.subfolders:
        _add_folder(branch, sub)
    for conversation in sorted(
        folder.conversations, key=lambda c: c.last_message_at, reverse=True,
    ):
        branch.add(_conversation_label(conversation))


def _conversation_label(conversation) -> str:
    return (
        f"{escape(conversation.title_with_default)} "
        f"[dim]({conversation.message_count} messages, {conversation.id[:8]})[/dim]"
    )


def build_tree(manager: ConversationManager) -> Tree:
    """Render the manager's root listing as a rich Tree."""
    tree = Tree("Conversations")
    for folder in manager.root_folders:
        _add_folder(tree, folder)
    for conversation in manager.root_conversations:
        tree.add(_conversation_label(conversation))
    return tree


async def _list(config: ChatConfig) -> None:
    manager = _open_manager(config)
    await manager.start()
    console.print(build_tree(manager))
    await manager.stop()


# ── chat ──


def render_event(event: ChatEvent) -> None:
    if isinstance(event, PartialOutputAppended):
        console.print(event.text, end="", markup=False)
    elif isinstance(event, MessageDeleted):
        console.print("\n[dim](reply discarded)[/dim]")


async def _render_events(bus: EventBus) -> None:
    async for event in bus.consume():
        render_event(event)


async def _chat(config: ChatConfig, conversation_id: str | None) -> None:
    bus = EventBus()
    config.event_callback = bus.make_callback()
    manager = _open_manager(config)
    await manager.start()

    conversation = None
    if conversation_id:
        conversation = manager.store.get_conversation(conversation_id)
        if conversation is None:
            console.print(f"[yellow]No conversation {escape(conversation_id)}; starting a new one[/yellow]")
    if conversation is None:
        conversation = await manager.new_conversation()
    orchestrator = manager.set_current_conversation(conversation)

    for message in orchestrator.messages:
        speaker = "you" if message.is_user else message.from_id
        console.print(f"[bold]{escape(speaker)}>[/bold] {escape(message.text)}")

    renderer = asyncio.create_task(_render_events(bus))
    try:
        while True:
            try:
                text = await asyncio.to_thread(console.input, "[bold]you>[/bold] ")
            except EOFError:
                break
            text = text.strip()
            if not text:
                continue
            if text == "/quit":
                break
            if text == "/new":
                conversation = await manager.new_conversation()
                orchestrator = manager.set_current_conversation(conversation)
                console.print("[dim]New conversation[/dim]")
                continue

            console.print(f"[bold]{escape(orchestrator.agent.agent_id)}>[/bold] ", end="")
            try:
                reply = await orchestrator.submit(text)
            except ChannelError as exc:
                console.print(f"\n[red]{escape(exc.user_message)}[/red]")
                console.print(f"[dim]{escape(exc.recovery_suggestion)}[/dim]")
                continue
            except AgentBusyError as exc:
                console.print(f"\n[red]{escape(str(exc))}[/red]")
                continue
            for event in bus.drain():
                render_event(event)
            console.print()
            if reply is not None and reply.predicted_per_second:
                console.print(
                    f"[dim]{reply.n_predicted or 0} tokens, "
                    f"{reply.predicted_per_second:.1f} tok/s[/dim]"
                )
    finally:
        bus.close()
        await renderer
        await manager.stop()


if __name__ == "__main__":
    main()
