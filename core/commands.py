"""The static command table.

Every handler receives a :class:`~core.router.CommandContext`. Bad input is
signalled with :class:`~core.router.CommandUsageError`; anything else raised
here becomes the router's generic failure notice.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import sys
import time
from typing import Iterator, List, Optional

from transports.base import (
    USER_SUFFIX,
    OutboundMessage,
    is_direct_id,
    is_group_id,
    user_part,
)

from .games import (
    GameError,
    GameKind,
    GameResult,
    Hangman,
    Outcome,
    Quiz,
    TicTacToe,
    game_content,
)
from .mathexpr import MathError, evaluate, format_number
from .qr import render_png
from .router import Capability, CommandContext, CommandRegistry, CommandUsageError
from .services import ServiceNotConfiguredError
from .state import SETTING_NAMES, WARNING_LIMIT, GameExistsError

log = logging.getLogger(__name__)

GROUP = Capability.GROUP_ONLY
ADMIN = Capability.ADMIN_ONLY
BOT_ADMIN = Capability.BOT_ADMIN
OWNER = Capability.OWNER_ONLY

BROADCAST_LIMIT = 50
BROADCAST_DELAY_SECONDS = 0.1
QR_MAX_LENGTH = 500
BLANK_PICTURE_URL = "https://i.ibb.co/0r5MZ9X/blank.png"
INVITE_BASE_URL = "https://chat.whatsapp.com/"

IMAGE_STYLES = {
    "1917style": "1917 cinematic, realistic",
    "advancedglow": "advanced glow, futuristic",
    "cartoonstyle": "cartoon style, colorful",
    "luxurygold": "luxury gold, elegant, shiny",
    "matrix": "matrix cyberpunk, green digital",
    "sand": "sand texture, desert, grainy",
    "papercutstyle": "papercut art style, layered",
}

HANGMAN_STAGES = (
    "  ____\n  |  |\n     |\n     |\n     |\n     |\n_____|___",
    "  ____\n  |  |\n  O  |\n     |\n     |\n     |\n_____|___",
    "  ____\n  |  |\n  O  |\n  |  |\n     |\n     |\n_____|___",
    "  ____\n  |  |\n  O  |\n /|  |\n     |\n     |\n_____|___",
    "  ____\n  |  |\n  O  |\n /|\\ |\n     |\n     |\n_____|___",
    "  ____\n  |  |\n  O  |\n /|\\ |\n /   |\n     |\n_____|___",
    "  ____\n  |  |\n  O  |\n /|\\ |\n / \\ |\n     |\n_____|___",
)

GAME_ALIASES = {
    "ttt": GameKind.TICTACTOE,
    "tictactoe": GameKind.TICTACTOE,
    "hangman": GameKind.HANGMAN,
    "quiz": GameKind.QUIZ,
}

CATEGORY_TITLES = (
    ("bot", "BOT COMMANDS"),
    ("settings", "SETTINGS"),
    ("group", "GROUP COMMANDS"),
    ("games", "GAMES"),
    ("ai", "AI & MEDIA"),
    ("fun", "FUN"),
    ("tools", "TOOLS"),
)

REGISTRY = CommandRegistry()
command = REGISTRY.register


def format_uptime(seconds: float) -> str:
    seconds = int(max(seconds, 0))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


def mention(user_id: str) -> str:
    return f"@{user_part(user_id)}"


def mentioned_users(ctx: CommandContext) -> List[str]:
    """Mentions carried by the message, else ``@digits`` arguments."""
    users = list(ctx.invocation.mentions)
    if users:
        return users
    for arg in ctx.args:
        if arg.startswith("@") and arg[1:].isdigit():
            users.append(f"{arg[1:]}{USER_SUFFIX}")
    return users


def _require_text(ctx: CommandContext, usage: str) -> str:
    text = ctx.text.strip()
    if not text:
        raise ctx.usage(usage)
    return text


@contextlib.contextmanager
def _configured() -> Iterator[None]:
    try:
        yield
    except ServiceNotConfiguredError as exc:
        raise CommandUsageError(f"❌ {exc}.") from exc


def render_board(board) -> str:
    cells = [f" {value or index + 1} " for index, value in enumerate(board)]
    rows = ["|".join(cells[i:i + 3]) for i in (0, 3, 6)]
    return "\n───┼───┼───\n".join(rows)


def render_menu(ctx: CommandContext) -> str:
    config = ctx.config
    prefix = ctx.invocation.prefix
    grouped = REGISTRY.by_category()
    lines = [
        "╔══════════════════════╗",
        f"║   🤖 {config.bot_name}",
        "╚══════════════════════╝",
        "",
        f"➤ Prefix  : {prefix}",
        f"➤ Version : {config.version}",
        f"➤ Plugins : {len(REGISTRY)}",
        f"➤ Uptime  : {format_uptime(time.time() - ctx.router.started_at)}",
    ]
    for category, title in CATEGORY_TITLES:
        commands = grouped.get(category)
        if not commands:
            continue
        lines.append("")
        lines.append(f"┏▣ ◈ {title} ◈")
        for cmd in commands:
            lines.append(f"│➽ {prefix}{cmd.name}")
        lines.append("┗▣")
    return "\n".join(lines)


# ----- bot controls -----
@command("ping", category="bot")
async def ping(ctx: CommandContext) -> None:
    started = time.perf_counter()
    await ctx.reply("Pinging...")
    latency = int((time.perf_counter() - started) * 1000)
    await ctx.reply(f"🏓 Pong! Latency: {latency}ms")


@command("menu", aliases=("help",), category="bot")
async def menu(ctx: CommandContext) -> None:
    await ctx.reply(render_menu(ctx))


@command("owner", category="bot")
async def owner(ctx: CommandContext) -> None:
    numbers = ctx.config.owner_numbers
    if not numbers:
        await ctx.reply("👑 No owner configured.")
        return
    listing = "\n".join(f"{i}. +{number}" for i, number in enumerate(numbers, 1))
    await ctx.reply(f"👑 *Bot Owners*\n\n{listing}")


@command("stats", category="bot")
async def stats(ctx: CommandContext) -> None:
    chats, messages = ctx.store.message_stats()
    uptime = format_uptime(time.time() - ctx.router.started_at)
    await ctx.reply(
        "📊 *Bot Statistics*\n"
        f"• Active chats: {chats}\n"
        f"• Total messages: {messages}\n"
        f"• Active games: {ctx.store.active_games()}\n"
        f"• Uptime: {uptime}\n"
        f"• Platform: {sys.platform}"
    )


@command("setnamebot", capabilities=OWNER, category="bot")
async def set_bot_name(ctx: CommandContext) -> None:
    name = _require_text(ctx, "Usage: {prefix}setnamebot <name>")
    await ctx.transport.update_profile_name(name)
    await ctx.reply(f"✅ Bot name changed to: {name}")


@command("setbio", capabilities=OWNER, category="bot")
async def set_bio(ctx: CommandContext) -> None:
    bio = _require_text(ctx, "Usage: {prefix}setbio <text>")
    await ctx.transport.update_profile_status(bio)
    await ctx.reply(f"✅ Bio updated to: {bio}")


@command("broadcast", capabilities=OWNER, category="bot")
async def broadcast(ctx: CommandContext) -> None:
    text = _require_text(ctx, "Usage: {prefix}broadcast <message>")
    targets = [
        conversation_id
        for conversation_id in ctx.store.known_conversations()
        if is_group_id(conversation_id) or is_direct_id(conversation_id)
    ][:BROADCAST_LIMIT]
    await ctx.reply("📢 Starting broadcast to all chats...")

    sent = failed = 0
    body = f"📢 *Broadcast from {ctx.config.bot_name}*\n\n{text}"
    for conversation_id in targets:
        try:
            await ctx.transport.send(conversation_id, OutboundMessage(text=body))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("broadcast to %s failed: %s", conversation_id, exc)
            failed += 1
            continue
        sent += 1
        await asyncio.sleep(BROADCAST_DELAY_SECONDS)
    await ctx.reply(f"✅ Broadcast completed!\n• Sent: {sent}\n• Failed: {failed}")


# ----- settings toggles -----
def _toggle(name: str):
    async def handler(ctx: CommandContext) -> None:
        choice = ctx.args[0].lower() if ctx.args else ""
        if choice not in ("on", "off"):
            raise ctx.usage("Use: {prefix}%s on / off" % name)
        enabled = choice == "on"
        ctx.store.set_setting(ctx.conversation_id, name, enabled)
        await ctx.reply(f"✅ {name} enabled." if enabled else f"❌ {name} disabled.")

    handler.__name__ = f"toggle_{name}"
    return handler


for _setting in SETTING_NAMES:
    command(_setting, capabilities=GROUP | ADMIN, category="settings")(_toggle(_setting))


# ----- group administration -----
@command("tagall", aliases=("everyone",), capabilities=GROUP | ADMIN, category="group")
async def tag_all(ctx: CommandContext) -> None:
    metadata = await ctx.group_metadata()
    members = list(metadata.participants)
    lines = ["📣 *Tagging Everyone*", ""] + [mention(member) for member in members]
    await ctx.reply("\n".join(lines), mentions=members)


async def _list_admins(ctx: CommandContext, title: str) -> None:
    metadata = await ctx.group_metadata()
    admins = list(metadata.admins)
    if not admins:
        await ctx.reply("ℹ️ No admins found in this group.")
        return
    lines = [title, ""] + [f"• {mention(admin)}" for admin in admins]
    await ctx.reply("\n".join(lines), mentions=admins)


@command("listadmins", capabilities=GROUP, category="group")
async def list_admins(ctx: CommandContext) -> None:
    await _list_admins(ctx, "👑 *Group Admins:*")


@command("tagadmins", capabilities=GROUP, category="group")
async def tag_admins(ctx: CommandContext) -> None:
    await _list_admins(ctx, "👑 *Attention Admins:*")


@command("gclink", capabilities=GROUP | ADMIN, category="group")
async def group_link(ctx: CommandContext) -> None:
    code = await ctx.transport.group_invite_code(ctx.conversation_id)
    await ctx.reply(f"🔗 Group Link: {INVITE_BASE_URL}{code}")


@command("setgroupname", capabilities=GROUP | ADMIN, category="group")
async def set_group_name(ctx: CommandContext) -> None:
    name = _require_text(ctx, "Usage: {prefix}setgroupname <new name>")
    await ctx.transport.update_group_subject(ctx.conversation_id, name)
    await ctx.reply(f"✅ Group name updated to: {name}")


@command("poll", capabilities=GROUP | ADMIN, category="group")
async def poll(ctx: CommandContext) -> None:
    raw = _require_text(ctx, "Usage: {prefix}poll <question>|<option1>|<option2>|...")
    question, *options = [part.strip() for part in raw.split("|")]
    options = [option for option in options if option]
    if not question or len(options) < 2:
        raise CommandUsageError("❌ Provide at least 2 options.")
    lines = [f"📊 *Poll:* {question}", ""]
    lines += [f"{i}. {option}" for i, option in enumerate(options, 1)]
    await ctx.reply("\n".join(lines))


@command("hidetag", capabilities=GROUP, category="group")
async def hide_tag(ctx: CommandContext) -> None:
    text = _require_text(ctx, "Usage: {prefix}hidetag <text>")
    metadata = await ctx.group_metadata()
    await ctx.reply(text, mentions=list(metadata.participants))


async def _remove_after_warnings(ctx: CommandContext, user_id: str) -> bool:
    if not ctx.invocation.bot_is_admin:
        return False
    await ctx.transport.update_participants(ctx.conversation_id, [user_id], "remove")
    ctx.store.reset_warnings(ctx.conversation_id, user_id)
    await ctx.reply(
        f"❌ {mention(user_id)} removed after {WARNING_LIMIT} warnings.", mentions=[user_id]
    )
    return True


@command("warn", capabilities=GROUP | ADMIN, category="group")
async def warn(ctx: CommandContext) -> None:
    targets = mentioned_users(ctx)
    if not targets:
        raise CommandUsageError("Tag a user to warn.")
    user_id = targets[0]
    count = ctx.store.add_warning(ctx.conversation_id, user_id)
    await ctx.reply(
        f"⚠️ {mention(user_id)} has been warned. Total warnings: {count}/{WARNING_LIMIT}",
        mentions=[user_id],
    )
    if count >= WARNING_LIMIT:
        await _remove_after_warnings(ctx, user_id)


@command("resetwarn", capabilities=GROUP | ADMIN, category="group")
async def reset_warn(ctx: CommandContext) -> None:
    targets = mentioned_users(ctx)
    if not targets:
        raise ctx.usage("Usage: {prefix}resetwarn @user")
    user_id = targets[0]
    ctx.store.reset_warnings(ctx.conversation_id, user_id)
    await ctx.reply(f"✅ Warnings cleared for {mention(user_id)}", mentions=[user_id])


def _membership(action: str, done: str):
    async def handler(ctx: CommandContext) -> None:
        targets = mentioned_users(ctx)
        if not targets:
            raise ctx.usage("Usage: {prefix}%s @user" % ctx.invocation.command_name)
        await ctx.transport.update_participants(ctx.conversation_id, targets, action)
        await ctx.reply(done.format(count=len(targets)), mentions=targets)

    handler.__name__ = f"membership_{action}"
    return handler


command("promote", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")(
    _membership("promote", "✅ Promoted {count} user(s)")
)
command("demote", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")(
    _membership("demote", "⚠️ Demoted {count} user(s)")
)
command("kick", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")(
    _membership("remove", "👢 Removed {count} user(s)")
)


@command("kickall", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")
async def kick_all(ctx: CommandContext) -> None:
    metadata = await ctx.group_metadata()
    bot = user_part(ctx.transport.user_id)
    removed = 0
    for member in metadata.participants:
        if metadata.is_admin(member) or user_part(member) == bot:
            continue
        await ctx.transport.update_participants(ctx.conversation_id, [member], "remove")
        removed += 1
    await ctx.reply(f"✅ All non-admin members removed ({removed}).")


@command("close", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")
async def close_group(ctx: CommandContext) -> None:
    await ctx.transport.update_group_setting(ctx.conversation_id, announcement=True)
    await ctx.reply("✅ Group is now closed (only admins can send messages)")


@command("open", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")
async def open_group(ctx: CommandContext) -> None:
    await ctx.transport.update_group_setting(ctx.conversation_id, announcement=False)
    await ctx.reply("✅ Group is now open")


@command("delppgroup", capabilities=GROUP | ADMIN | BOT_ADMIN, category="group")
async def delete_group_picture(ctx: CommandContext) -> None:
    await ctx.transport.update_group_picture(ctx.conversation_id, BLANK_PICTURE_URL)
    await ctx.reply("✅ Group profile picture deleted.")


@command("leave", capabilities=GROUP | OWNER, category="group")
async def leave(ctx: CommandContext) -> None:
    await ctx.reply("👋 Leaving group...")
    await ctx.transport.leave_group(ctx.conversation_id)


@command("userid", category="group")
async def user_id(ctx: CommandContext) -> None:
    await ctx.reply(f"👤 Your ID: {ctx.sender_id}")


@command("tostatusgroup", category="group")
async def to_status(ctx: CommandContext) -> None:
    text = _require_text(ctx, "Usage: {prefix}tostatusgroup <text>")
    own = user_part(ctx.transport.user_id)
    if not own:
        raise CommandUsageError("❌ Bot account is not ready yet.")
    await ctx.transport.send(f"{own}{USER_SUFFIX}", OutboundMessage(text=text))
    await ctx.reply("✅ Message posted to your status.")


# ----- games -----
@command("tictactoe", aliases=("ttt",), category="games")
async def tictactoe(ctx: CommandContext) -> None:
    targets = mentioned_users(ctx)
    if not targets:
        raise ctx.usage("Usage: {prefix}ttt @user (mention the user you challenge)")
    try:
        game = TicTacToe.start(ctx.sender_id, targets[0], now=ctx.store.now())
    except ValueError as exc:
        raise CommandUsageError("You cannot challenge yourself.") from exc
    try:
        ctx.store.create_game(ctx.conversation_id, game)
    except GameExistsError as exc:
        raise CommandUsageError("❌ A Tic Tac Toe game is already in progress in this chat.") from exc
    x, o = game.players
    await ctx.reply(
        "🎮 *Tic Tac Toe Started!*\n\n"
        f"Player X: {mention(x)}\nPlayer O: {mention(o)}\n\n"
        f"Current board:\n{render_board(game.board)}\n\n"
        f"It's X's turn! Use {ctx.invocation.prefix}tttmove <1-9>",
        mentions=[x, o],
    )


_TTT_ERRORS = {
    GameError.NOT_YOUR_TURN: "It's not your turn!",
    GameError.CELL_OCCUPIED: "Cell already taken!",
    GameError.INVALID_CELL: "Usage: {prefix}tttmove <1-9>",
}


@command("tttmove", category="games")
async def tictactoe_move(ctx: CommandContext) -> None:
    raw = ctx.args[0] if ctx.args else ""
    cell = int(raw) if raw.isdecimal() else 0
    result: Optional[GameResult] = ctx.store.mutate_game(
        ctx.conversation_id, GameKind.TICTACTOE, lambda game: game.move(ctx.sender_id, cell)
    )
    if result is None:
        raise ctx.usage("No active game. Start with {prefix}ttt @user")
    if result.outcome is Outcome.ERROR:
        raise ctx.usage(_TTT_ERRORS[result.error])

    game = result.game
    board = render_board(game.board)
    if result.outcome is Outcome.WIN:
        await ctx.reply(
            f"🎉 *Game Over!*\n\n{board}\n\n"
            f"Winner: {mention(result.winner)} ({game.symbol_for(result.winner)})",
            mentions=[result.winner],
        )
    elif result.outcome is Outcome.DRAW:
        await ctx.reply(f"🤝 *Draw!*\n\n{board}")
    else:
        turn = game.turn_owner
        await ctx.reply(
            f"Next move:\n\n{board}\n\nTurn: {mention(turn)} ({game.symbol_for(turn)})",
            mentions=[turn],
        )


@command("hangmanstart", category="games")
async def hangman_start(ctx: CommandContext) -> None:
    game = Hangman.start(now=ctx.store.now())
    try:
        ctx.store.create_game(ctx.conversation_id, game)
    except GameExistsError as exc:
        raise CommandUsageError("❌ A hangman game is already in progress in this chat.") from exc
    await ctx.reply(
        f"🎯 *Hangman Started!*\n\nWord: {game.display}\nTries left: {game.tries_remaining}\n\n"
        f"Guess a letter with: {ctx.invocation.prefix}hangmanguess <letter>"
    )


@command("hangmanguess", category="games")
async def hangman_guess(ctx: CommandContext) -> None:
    letter = ctx.args[0] if ctx.args else ""
    result = ctx.store.mutate_game(
        ctx.conversation_id, GameKind.HANGMAN, lambda game: game.guess(letter)
    )
    if result is None:
        raise ctx.usage("No active game. Start with {prefix}hangmanstart")
    if result.error is GameError.ALREADY_GUESSED:
        raise CommandUsageError("Letter already guessed!")
    if result.error is GameError.INVALID_LETTER:
        raise ctx.usage("Usage: {prefix}hangmanguess <single letter>")

    game = result.game
    if result.outcome is Outcome.WIN:
        await ctx.reply(
            f"🎉 *You Won!*\n\nThe word was: *{game.word}*\nTries left: {game.tries_remaining}"
        )
    elif result.outcome is Outcome.LOSS:
        await ctx.reply(f"💀 *Game Over!*\n\nThe word was: *{game.word}*\n\nBetter luck next time!")
    else:
        stage = HANGMAN_STAGES[len(HANGMAN_STAGES) - 1 - game.tries_remaining]
        await ctx.reply(
            f"{stage}\n\nWord: {game.display}\nTries left: {game.tries_remaining}\n"
            f"Guessed: {', '.join(game.guessed)}"
        )


@command("quizstart", category="games")
async def quiz_start(ctx: CommandContext) -> None:
    quiz = Quiz.start(now=ctx.store.now())
    try:
        ctx.store.create_game(ctx.conversation_id, quiz)
    except GameExistsError as exc:
        raise CommandUsageError("❌ A quiz is already active in this chat!") from exc
    await ctx.reply(
        f"🧠 *Quiz Started!*\n\nQuestion: {quiz.question}\n\n"
        f"Choices: {', '.join(quiz.choices)}\n\n"
        f"Answer with: {ctx.invocation.prefix}quizanswer <answer>"
    )


@command("quizanswer", category="games")
async def quiz_answer(ctx: CommandContext) -> None:
    if ctx.store.get_game(ctx.conversation_id, GameKind.QUIZ) is None:
        raise ctx.usage("No active quiz. Start with {prefix}quizstart")
    answer = _require_text(ctx, "Usage: {prefix}quizanswer <answer>")
    result = ctx.store.mutate_game(
        ctx.conversation_id, GameKind.QUIZ, lambda quiz: quiz.answer(answer)
    )
    if result is None:
        raise ctx.usage("No active quiz. Start with {prefix}quizstart")
    correct = result.game.correct_answer
    if result.outcome is Outcome.WIN:
        await ctx.reply(f"✅ *Correct!* The answer is {correct}")
    else:
        await ctx.reply(f"❌ *Wrong!* The correct answer is {correct}")


@command("endgame", category="games")
async def end_game(ctx: CommandContext) -> None:
    name = ctx.args[0].lower() if ctx.args else ""
    kind = GAME_ALIASES.get(name)
    if kind is None:
        raise ctx.usage("Usage: {prefix}endgame <ttt|hangman|quiz>")
    if ctx.store.end_game(ctx.conversation_id, kind) is None:
        await ctx.reply(f"ℹ️ No active {kind.value} game.")
        return
    await ctx.reply(f"🛑 {kind.value} game ended.")


# ----- AI and media -----
@command("gpt", category="ai")
async def gpt(ctx: CommandContext) -> None:
    question = _require_text(ctx, "Usage: {prefix}gpt <question>")
    with _configured():
        answer = await ctx.services.chat(question)
    await ctx.reply(answer or "❌ AI error. Try again.")


def _image_style(name: str, style: str):
    async def handler(ctx: CommandContext) -> None:
        prompt = _require_text(ctx, "Usage: {prefix}%s <prompt>" % name)
        await ctx.reply(f"🎨 Generating {name} image...")
        with _configured():
            url = await ctx.services.generate_image(prompt, style)
        if not url:
            await ctx.reply("❌ Failed to generate image.")
            return
        await ctx.reply(f'✨ *{name} image* for: "{prompt}"', image_url=url)

    handler.__name__ = f"image_{name}"
    return handler


for _name, _style in IMAGE_STYLES.items():
    command(_name, category="ai")(_image_style(_name, _style))


@command("song", aliases=("yt",), category="ai")
async def song(ctx: CommandContext) -> None:
    query = _require_text(ctx, "Usage: {prefix}song <song name>")
    with _configured():
        videos = await ctx.services.search_videos(query, limit=3)
    if not videos:
        await ctx.reply("❌ No results found.")
        return
    lines = ["🎵 *Search Results:*", ""]
    for i, video in enumerate(videos, 1):
        lines.append(f"{i}. *{video.title}*")
        lines.append(f"   🔗 {video.url}")
        lines.append("")
    await ctx.reply("\n".join(lines).rstrip())


@command("imdb", category="ai")
async def imdb(ctx: CommandContext) -> None:
    title = _require_text(ctx, "Usage: {prefix}imdb <movie name>")
    with _configured():
        movie = await ctx.services.lookup_movie(title)
    if movie is None:
        await ctx.reply("❌ Movie not found.")
        return
    info = (
        f"🎬 *{movie.title}* ({movie.year})\n\n"
        f"⭐ Rating: {movie.rating}\n"
        f"🎭 Genre: {movie.genre}\n"
        f"🎥 Director: {movie.director}\n"
        f"👥 Actors: {movie.actors}\n\n"
        f"📖 Plot:\n{movie.plot}"
    )
    await ctx.reply(info, image_url=movie.poster)


@command("qr", category="ai")
async def qr(ctx: CommandContext) -> None:
    text = _require_text(ctx, "Usage: {prefix}qr hello world")[:QR_MAX_LENGTH]
    image = await asyncio.get_running_loop().run_in_executor(None, render_png, text)
    shown = text if len(text) <= 50 else text[:50] + "..."
    await ctx.reply(f"QR Code for: {shown}", image_bytes=image)


# ----- fun -----
def _pick(section: str) -> str:
    return random.choice(game_content()[section])


@command("joke", category="fun")
async def joke(ctx: CommandContext) -> None:
    await ctx.reply(f"😂 {_pick('jokes')}")


@command("quote", category="fun")
async def quote(ctx: CommandContext) -> None:
    await ctx.reply(f'💬 "{_pick("quotes")}"')


@command("truth", category="fun")
async def truth(ctx: CommandContext) -> None:
    await ctx.reply(f"🤔 Truth: {_pick('truths')}")


@command("dare", category="fun")
async def dare(ctx: CommandContext) -> None:
    await ctx.reply(f"😈 Dare: {_pick('dares')}")


@command("dice", category="fun")
async def dice(ctx: CommandContext) -> None:
    await ctx.reply(f"🎲 You rolled: {random.randint(1, 6)}")


@command("coin", category="fun")
async def coin(ctx: CommandContext) -> None:
    await ctx.reply(f"🪙 {random.choice(('Heads', 'Tails'))}!")


@command("guess", category="fun")
async def guess(ctx: CommandContext) -> None:
    number = random.randint(1, 10)
    await ctx.reply(f"🎲 I'm thinking of a number between 1-10...\nIt's *{number}*!")


@command("say", category="fun")
async def say(ctx: CommandContext) -> None:
    await ctx.reply(_require_text(ctx, "Usage: {prefix}say <text>"))


# ----- tools -----
@command("math", aliases=("calc",), category="tools")
async def calculate(ctx: CommandContext) -> None:
    expression = _require_text(ctx, "Usage: {prefix}math 5+5*2")
    try:
        value = evaluate(expression)
    except MathError as exc:
        raise CommandUsageError("❌ Invalid equation.") from exc
    await ctx.reply(f"🧮 {expression} = *{format_number(value)}*")


@command("echo", category="tools")
async def echo(ctx: CommandContext) -> None:
    await ctx.reply(_require_text(ctx, "Usage: {prefix}echo <text>"))


@command("reverse", category="tools")
async def reverse(ctx: CommandContext) -> None:
    await ctx.reply(_require_text(ctx, "Usage: {prefix}reverse <text>")[::-1])


@command("countchars", category="tools")
async def count_chars(ctx: CommandContext) -> None:
    text = _require_text(ctx, "Usage: {prefix}countchars <text>")
    await ctx.reply(
        f"📊 Text Analysis:\n• Characters: {len(text)}\n• Words: {len(text.split())}"
    )
