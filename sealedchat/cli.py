"""
Command-line interface for sealedchat.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from sealedchat.client.client import ChatClient
from sealedchat.client.identity import IdentityKeyService
from sealedchat.client.infrastructure.keystore import FileKeyStore
from sealedchat.common.config import Config
from sealedchat.common.exceptions import ChatError
from sealedchat.common.logging_utils import fingerprint
from sealedchat.common.models import ClientConfig
from sealedchat.server import start_server

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


def _client_config(ctx: click.Context) -> ClientConfig:
    return ClientConfig(
        server_url=ctx.obj.get("server_url"),
        keystore_dir=ctx.obj.get("keystore_dir"),
    )


def _run_as_user(
    ctx: click.Context,
    user: str,
    action: Callable[[ChatClient], Awaitable[Any]],
    display_name: str | None = None,
) -> Any:
    """Open a session for ``user``, run ``action`` and always log out."""

    async def main() -> Any:
        client = ChatClient.over_http(_client_config(ctx))
        await client.init_identity(user, display_name)
        try:
            return await action(client)
        finally:
            client.logout()

    try:
        return asyncio.run(main())
    except ChatError as err:
        raise click.ClickException(str(err)) from err


@click.group()
@click.option("--server-url", default=None, help="Backend URL (default: from SEALEDCHAT_SERVER_URL)")
@click.option(
    "--keystore-dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding local identity keys (default: ~/.sealedchat/keys)",
)
@click.pass_context
def cli(ctx: click.Context, server_url: str | None, keystore_dir: Path | None) -> None:
    """sealedchat: end-to-end encrypted group chat"""
    ctx.ensure_object(dict)
    ctx.obj["server_url"] = server_url
    ctx.obj["keystore_dir"] = keystore_dir


@cli.command()
@click.option("--host", default=None, help="Host to bind server to (default: from SEALEDCHAT_SERVER_HOST env or 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Port to bind server to (default: from SEALEDCHAT_SERVER_PORT env or 8000)")
@click.option("--store-file", default=None, type=click.Path(dir_okay=False, path_type=Path), help="JSON file the backend persists to")
@click.option("--reset-store", is_flag=True, help="Delete the persisted store on startup")
def serve(
    host: str | None,
    port: int | None,
    store_file: Path | None,
    reset_store: bool,  # noqa: FBT001
) -> None:
    """Start the chat backend server"""
    if host:
        os.environ["SEALEDCHAT_SERVER_HOST"] = host
    if port:
        os.environ["SEALEDCHAT_SERVER_PORT"] = str(port)

    config = Config()
    store_file = store_file or config.STORE_FILE_PATH
    if reset_store and store_file.exists():
        store_file.unlink()
        click.echo("Store reset")

    start_server(config, store_file_path=store_file)


@cli.command()
@click.option("--user", required=True, help="User id")
@click.pass_context
def identity(ctx: click.Context, user: str) -> None:
    """Create or show the local identity key"""

    async def main() -> str:
        config = Config()
        keys_dir = ctx.obj.get("keystore_dir") or config.KEYSTORE_DIR
        # Local only: the directory is never contacted here.
        service = IdentityKeyService(FileKeyStore(keys_dir), config=config)
        pair = await service.get_or_create_identity_key_pair(user)
        return service.export_public_key(pair.public_key)

    public_key = asyncio.run(main())
    click.echo(f"Identity for {user}")
    click.echo(f"Fingerprint: {fingerprint(public_key)}")
    click.echo(f"Public key: {public_key}")


@cli.command()
@click.option("--user", required=True, help="User id")
@click.option("--name", default=None, help="Display name")
@click.pass_context
def register(ctx: click.Context, user: str, name: str | None) -> None:
    """Create the directory record and publish the public key"""

    async def main() -> None:
        client = ChatClient.over_http(_client_config(ctx))
        await client.directory.register(user, name)
        await client.init_identity(user, name)
        client.logout()

    try:
        asyncio.run(main())
    except ChatError as err:
        raise click.ClickException(str(err)) from err
    click.echo(f"Registered {user}")


@cli.command()
@click.option("--user", required=True, help="User id")
@click.pass_context
def users(ctx: click.Context, user: str) -> None:
    """List users who can be added to a conversation"""
    entries = _run_as_user(ctx, user, lambda c: c.get_chat_eligible_users())
    for entry in entries:
        click.echo(f"{entry.user_id}\t{entry.display_name or ''}")


@cli.command()
@click.option("--user", required=True, help="User id")
@click.option("--with", "participants", multiple=True, required=True, help="Participant user id (repeatable)")
@click.option("--name", default=None, help="Conversation name")
@click.pass_context
def create(
    ctx: click.Context, user: str, participants: tuple[str, ...], name: str | None
) -> None:
    """Create an encrypted conversation"""
    conversation_id = _run_as_user(
        ctx, user, lambda c: c.create_conversation(list(participants), name)
    )
    click.echo(conversation_id)


@cli.command()
@click.option("--user", required=True, help="User id")
@click.option("--conversation", required=True, help="Conversation id")
@click.option("--text", required=True, help="Message text")
@click.pass_context
def send(ctx: click.Context, user: str, conversation: str, text: str) -> None:
    """Encrypt and send a message"""
    message_id = _run_as_user(ctx, user, lambda c: c.send_message(conversation, text))
    if message_id is None:
        click.echo("Nothing to send")
    else:
        click.echo(message_id)


@cli.command()
@click.option("--user", required=True, help="User id")
@click.option("--conversation", required=True, help="Conversation id")
@click.pass_context
def read(ctx: click.Context, user: str, conversation: str) -> None:
    """Fetch and decrypt recent messages"""
    messages = _run_as_user(ctx, user, lambda c: c.read_messages(conversation))
    for m in messages:
        stamp = m.timestamp.strftime("%Y-%m-%d %H:%M")
        click.echo(f"[{stamp}] {m.sender_name or m.sender_id}: {m.text}")


@cli.command()
@click.option("--user", required=True, help="User id")
@click.pass_context
def conversations(ctx: click.Context, user: str) -> None:
    """List conversations, most recent first"""
    found = _run_as_user(ctx, user, lambda c: c.list_conversations())
    for conv in found:
        if conv.name:
            label = conv.name
        elif len(conv.participants) == 2:  # noqa: PLR2004
            label = "Direct Message"
        else:
            label = f"Group Chat ({len(conv.participants)})"
        click.echo(f"{conv.id}\t{label}\t{', '.join(conv.participants)}")


if __name__ == "__main__":
    cli()
