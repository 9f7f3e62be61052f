import asyncio
import sys

import typer
from rich.console import Console
from rich.table import Table

from chatbot.config import settings
from chatbot.core.logging import configure_logging

console = Console()
cli_app = typer.Typer(name="chatbot", help="Chat client and backend")


def _run_async(coro):
    """Run async code from sync CLI context."""
    return asyncio.run(coro)


def _client_state(conversation_id: str | None = None):
    from chatbot.client import ConversationStateMachine, HttpConversationStore, NavigationSynchronizer, Router

    configure_logging(settings.chat_log_level, stream=sys.stderr)
    store = HttpConversationStore.from_settings()
    router = Router(conversation_id)
    state = ConversationStateMachine(store, router)
    NavigationSynchronizer(state, router)
    return store, state


def _print_messages(messages, failed) -> None:
    for message in messages:
        style = "cyan" if message.role.value == "user" else "green"
        console.print(f"[bold {style}]{message.role.value}[/bold {style}]: {message.content}")
        record = failed.get(message.id)
        if record:
            console.print(f"  [red]not delivered ({record.error_code}): {record.error_message}[/red]")


@cli_app.command("serve")
def serve(
    host: str = typer.Option(settings.chat_host, "--host", help="Bind address"),
    port: int = typer.Option(settings.chat_port, "--port", help="Bind port"),
):
    """Run the chat backend."""
    import uvicorn

    uvicorn.run("chatbot.main:app", host=host, port=port)


@cli_app.command("status")
def status():
    """Check whether the chat backend is reachable."""
    async def _status():
        store, state = _client_state()
        try:
            await state.initialize()
        finally:
            await state.router.settle()
            await store.close()
        return state

    state = _run_async(_status())
    if state.backend_status.value == "online":
        console.print(f"[bold green]Connected[/bold green] to {settings.chat_api_url}")
    else:
        console.print(f"[bold red]Backend offline[/bold red]: {state.error}")
        raise typer.Exit(code=1)


@cli_app.command("list")
def list_conversations():
    """List conversations, newest first."""
    async def _list():
        store, state = _client_state()
        try:
            await state.initialize()
        finally:
            await state.router.settle()
            await store.close()
        return state

    state = _run_async(_list())
    if state.error:
        console.print(f"[red]{state.error}[/red]")
        raise typer.Exit(code=1)
    if not state.conversations:
        console.print("[dim]No conversations yet.[/dim]")
        return

    table = Table(title="Conversations")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Created")
    for conversation in state.conversations:
        table.add_row(conversation.id, conversation.title, conversation.created_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


@cli_app.command("show")
def show(conversation_id: str = typer.Argument(help="Conversation ID")):
    """Print a conversation's messages."""
    async def _show():
        store, state = _client_state(conversation_id)
        try:
            await state.initialize()
        finally:
            await state.router.settle()
            await store.close()
        return state

    state = _run_async(_show())
    if state.selected is None:
        console.print(f"[red]{state.error or 'Conversation not found.'}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[bold]{state.selected.title}[/bold]\n")
    _print_messages(state.messages, state.failed)


@cli_app.command("send")
def send(
    text: str = typer.Argument(help="Message to send"),
    conversation_id: str = typer.Option(None, "--chat", help="Conversation ID (new conversation if omitted)"),
):
    """Send a message and print the assistant's reply."""
    async def _send():
        store, state = _client_state(conversation_id)
        try:
            await state.initialize()
            if state.backend_status.value != "online":
                return state
            if conversation_id and state.selected is None:
                return state
            if state.selected is None:
                await state.start_new_conversation()
            if state.selected is not None:
                await state.send_message(text)
        finally:
            await state.router.settle()
            await store.close()
        return state

    state = _run_async(_send())
    if state.selected is None or state.error:
        console.print(f"[red]{state.error or 'Conversation not found.'}[/red]")
        _print_messages(state.messages[-2:], state.failed)
        raise typer.Exit(code=1)

    console.print(f"[dim]{state.selected.title} ({state.selected.id})[/dim]")
    _print_messages(state.messages[-2:], state.failed)


@cli_app.command("delete")
def delete(conversation_id: str = typer.Argument(help="Conversation ID")):
    """Delete a conversation and its messages."""
    async def _delete():
        store, state = _client_state()
        try:
            await state.delete_conversation(conversation_id)
        finally:
            await state.router.settle()
            await store.close()
        return state

    state = _run_async(_delete())
    if state.error:
        console.print(f"[red]{state.error}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted[/green] {conversation_id}")


if __name__ == "__main__":
    cli_app()
