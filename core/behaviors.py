"""Non-command behaviors.

Message behaviors run for every inbound message before command parsing and
return True to stop further processing. Event handlers cover the transport
events that are not messages.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from typing import Dict, Tuple, Type

from transports.base import (
    ContactsUpsert,
    MessageRevoked,
    OutboundMessage,
    ParticipantsUpdate,
    Transport,
    is_direct_id,
    is_group_id,
    user_part,
)

from .games import game_content
from .router import Behavior, CommandRouter, EventHandler, MessageContext
from .state import WARNING_LIMIT

log = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)
BOT_MENTION = re.compile(r"@bot", re.IGNORECASE)
PRESENCE_HOLD_SECONDS = 2.0
DEFAULT_AVATAR_URL = "https://i.imgur.com/JP1gK9C.png"


def _random_reaction() -> str:
    return random.choice(game_content()["reactions"])


async def anti_link(ctx: MessageContext) -> bool:
    message = ctx.message
    conversation_id = message.conversation_id
    if not ctx.store.is_enabled(conversation_id, "antilink"):
        return False
    if ctx.sender_is_admin or not LINK_PATTERN.search(message.text or ""):
        return False

    sender = message.sender_id
    try:
        await ctx.transport.delete_message(conversation_id, message.message_id, sender)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.warning("antilink: could not delete message in %s: %s", conversation_id, exc)

    count = ctx.store.add_warning(conversation_id, sender)
    await ctx.reply(
        f"🚫 @{user_part(sender)} links are not allowed!\n⚠️ Warning: {count}/{WARNING_LIMIT}",
        mentions=[sender],
    )
    if count >= WARNING_LIMIT and ctx.bot_is_admin:
        await ctx.transport.update_participants(conversation_id, [sender], "remove")
        ctx.store.reset_warnings(conversation_id, sender)
        await ctx.reply(
            f"❌ @{user_part(sender)} removed after {WARNING_LIMIT} warnings.", mentions=[sender]
        )
        log.info("antilink: removed %s from %s", sender, conversation_id)
    return True


async def _hold_presence(transport: Transport, conversation_id: str, presence: str) -> None:
    try:
        await transport.send_presence(conversation_id, presence)
        await asyncio.sleep(PRESENCE_HOLD_SECONDS)
        await transport.send_presence(conversation_id, "paused")
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.debug("%s presence failed for %s: %s", presence, conversation_id, exc)


async def automation(ctx: MessageContext) -> bool:
    message = ctx.message
    conversation_id = message.conversation_id
    enabled = ctx.store.get_settings(conversation_id)
    direct = is_direct_id(conversation_id)

    try:
        if enabled.get("autostatusview") and direct:
            await ctx.transport.mark_read(conversation_id, message.message_id)
        if message.is_group and enabled.get("autotyping"):
            ctx.router.spawn(_hold_presence(ctx.transport, conversation_id, "composing"), transport=ctx.transport)
        if message.is_group and enabled.get("autorecording"):
            ctx.router.spawn(_hold_presence(ctx.transport, conversation_id, "recording"), transport=ctx.transport)
        if enabled.get("autoreact"):
            await ctx.transport.react(conversation_id, message.message_id, _random_reaction())
        if enabled.get("autoreacttostatus") and direct:
            await ctx.transport.react(conversation_id, message.message_id, _random_reaction())
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.warning("automation failed in %s: %s", conversation_id, exc)
    return False


async def count_message(ctx: MessageContext) -> bool:
    ctx.store.record_message(ctx.conversation_id)
    return False


async def mention_reply(ctx: MessageContext) -> bool:
    text = ctx.message.text or ""
    if not BOT_MENTION.search(text):
        return False
    query = BOT_MENTION.sub("", text).strip()
    if not query:
        return True
    try:
        answer = await ctx.services.chat(query)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.warning("mention reply failed in %s: %s", ctx.conversation_id, exc)
        return True
    if answer:
        await ctx.reply(answer)
    return True


MESSAGE_BEHAVIORS: Tuple[Behavior, ...] = (anti_link, automation, count_message, mention_reply)


async def _welcome_text(transport: Transport, conversation_id: str, user_id: str) -> Tuple[str, str]:
    metadata = await transport.group_metadata(conversation_id)
    rules = "\n".join(
        f"{i}. {rule}" for i, rule in enumerate(game_content().get("group_rules") or [], 1)
    )
    caption = (
        "┏▣ ◈ WELCOME ◈\n"
        f"┃ 👋 Welcome @{user_part(user_id)}\n"
        f"┃ 📌 Group: {metadata.subject}\n"
        "┗▣"
    )
    if rules:
        caption += f"\n\n📜 *GROUP RULES*\n{rules}"
    try:
        picture = await transport.profile_picture_url(user_id)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.debug("no profile picture for %s: %s", user_id, exc)
        picture = None
    return caption, picture or DEFAULT_AVATAR_URL


async def greet_participants(
    router: CommandRouter, update: ParticipantsUpdate, transport: Transport
) -> None:
    conversation_id = update.conversation_id
    if update.action == "add" and router.store.is_enabled(conversation_id, "welcome"):
        for user_id in update.participants:
            caption, picture = await _welcome_text(transport, conversation_id, user_id)
            await transport.send(
                conversation_id,
                OutboundMessage(text=caption, mentions=[user_id], image_url=picture),
            )
    elif update.action == "remove" and router.store.is_enabled(conversation_id, "goodbye"):
        for user_id in update.participants:
            await transport.send(
                conversation_id,
                OutboundMessage(
                    text=(
                        "┏▣ ◈ GOODBYE ◈\n"
                        f"┃ 😢 @{user_part(user_id)} left the group\n"
                        "┃ 👋 Farewell!\n"
                        "┗▣"
                    ),
                    mentions=[user_id],
                ),
            )


async def announce_revoked(
    router: CommandRouter, event: MessageRevoked, transport: Transport
) -> None:
    if not router.store.is_enabled(event.conversation_id, "antidelete"):
        return
    await transport.send(
        event.conversation_id,
        OutboundMessage(
            text=f"⚠️ Anti-Delete: Message deleted by @{user_part(event.sender_id)}",
            mentions=[event.sender_id],
        ),
    )


async def greet_contacts(router: CommandRouter, event: ContactsUpsert, transport: Transport) -> None:
    text = (
        f"👋 Hello! I'm *{router.config.bot_name}*\n\n"
        f"Type {router.prefix}menu to see all commands.\n\n"
        "Need help? Contact my owner!"
    )
    for contact_id in event.contact_ids:
        if not contact_id or is_group_id(contact_id):
            continue
        try:
            await transport.send(contact_id, OutboundMessage(text=text))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("greeting to %s failed: %s", contact_id, exc)


EVENT_HANDLERS: Dict[Type, EventHandler] = {
    ParticipantsUpdate: greet_participants,
    MessageRevoked: announce_revoked,
    ContactsUpsert: greet_contacts,
}
