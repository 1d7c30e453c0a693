import asyncio

from core.behaviors import DEFAULT_AVATAR_URL
from core.commands import REGISTRY, format_uptime, render_board
from core.games import GameKind, Hangman, Quiz
from core.services import ExternalServices
from core.state import StateStore
from tests.fakes import (
    ALICE,
    BOB,
    BOT,
    CAROL,
    GROUP,
    OWNER,
    FakeServices,
    FakeTransport,
    make_router,
    message,
)
from transports.base import ContactsUpsert, MessageRevoked, ParticipantsUpdate

QUIZ_BANK = [{"question": "Capital of France?", "choices": ["Paris", "Rome"], "answer": "Paris"}]


def group_transport(admins=(ALICE, BOT)):
    transport = FakeTransport()
    transport.add_group(GROUP, [ALICE, BOB, CAROL, BOT], admins=list(admins))
    return transport


def run(router, transport, *events):
    async def scenario():
        for event in events:
            await router.handle_event(event, transport)

    asyncio.run(scenario())
    return transport.texts()


def test_helpers():
    assert format_uptime(3725) == "1h 2m 5s"
    board = render_board(("X", "", "O", "", "", "", "", "", ""))
    assert board.splitlines()[0] == " X | 2 | O "


def test_every_setting_has_a_toggle():
    for name in ("welcome", "goodbye", "antilink", "antidelete", "autoreact"):
        assert name in REGISTRY


def test_menu_lists_commands():
    texts = run(make_router(), FakeTransport(), message(".help", conversation=ALICE))
    menu = texts[0]
    assert "VORTE PRO" in menu
    assert "│➽ .ping" in menu
    assert "│➽ .tictactoe" in menu
    assert "GAMES" in menu


def test_tictactoe_flow():
    router = make_router()
    transport = group_transport()
    texts = run(
        router,
        transport,
        message(".ttt", sender=ALICE),
        message(".ttt @x", sender=ALICE, mentions=[ALICE]),
        message(".ttt", sender=ALICE, mentions=[BOB]),
        message(".ttt", sender=CAROL, mentions=[ALICE]),
        message(".tttmove 1", sender=BOB),
        message(".tttmove 1", sender=ALICE),
        message(".tttmove 1", sender=BOB),
        message(".tttmove 4", sender=BOB),
        message(".tttmove 2", sender=ALICE),
        message(".tttmove 5", sender=BOB),
        message(".tttmove 3", sender=ALICE),
        message(".tttmove 6", sender=BOB),
    )
    assert texts[0] == "Usage: .ttt @user (mention the user you challenge)"
    assert texts[1] == "You cannot challenge yourself."
    assert texts[2].startswith("🎮 *Tic Tac Toe Started!*")
    assert "Player X: @15551230001" in texts[2]
    assert texts[3] == "❌ A Tic Tac Toe game is already in progress in this chat."
    assert texts[4] == "It's not your turn!"
    assert texts[5].startswith("Next move:")
    assert texts[6] == "Cell already taken!"
    assert texts[10].startswith("🎉 *Game Over!*")
    assert "Winner: @15551230001 (X)" in texts[10]
    assert texts[11] == "No active game. Start with .ttt @user"
    assert router.store.get_game(GROUP, GameKind.TICTACTOE) is None


def test_tictactoe_rejects_bad_cells():
    router = make_router()
    transport = group_transport()
    texts = run(
        router,
        transport,
        message(".ttt", sender=ALICE, mentions=[BOB]),
        message(".tttmove ten", sender=ALICE),
        message(".tttmove 0", sender=ALICE),
        message(".tttmove \N{SUPERSCRIPT TWO}", sender=ALICE),
    )
    assert texts[1:] == ["Usage: .tttmove <1-9>"] * 3


def test_hangman_guesses():
    store = StateStore()
    store.create_game(GROUP, Hangman.start(now=store.now(), word="cat"))
    router = make_router(store)
    texts = run(
        router,
        group_transport(),
        message(".hangmanstart"),
        message(".hangmanguess c"),
        message(".hangmanguess C"),
        message(".hangmanguess 7"),
        message(".hangmanguess z"),
        message(".hangmanguess a"),
        message(".hangmanguess t"),
    )
    assert texts[0] == "❌ A hangman game is already in progress in this chat."
    assert "Word: c _ _" in texts[1]
    assert "Tries left: 6" in texts[1]
    assert texts[2] == "Letter already guessed!"
    assert texts[3] == "Usage: .hangmanguess <single letter>"
    assert "Tries left: 5" in texts[4]
    assert texts[6] == "🎉 *You Won!*\n\nThe word was: *cat*\nTries left: 5"
    assert store.get_game(GROUP, GameKind.HANGMAN) is None


def test_hangman_loss():
    store = StateStore()
    store.create_game(GROUP, Hangman.start(now=store.now(), word="python"))
    router = make_router(store)
    texts = run(router, group_transport(), *(message(f".hangmanguess {c}") for c in "abcdef"))
    assert texts[-1].startswith("💀 *Game Over!*")
    assert "*python*" in texts[-1]


def test_quiz_answer():
    store = StateStore()
    store.create_game(GROUP, Quiz.start(now=store.now(), bank=QUIZ_BANK))
    router = make_router(store)
    texts = run(
        router,
        group_transport(),
        message(".quizstart"),
        message(".quizanswer"),
        message(".quizanswer paris"),
        message(".quizanswer paris"),
    )
    assert texts == [
        "❌ A quiz is already active in this chat!",
        "Usage: .quizanswer <answer>",
        "✅ *Correct!* The answer is Paris",
        "No active quiz. Start with .quizstart",
    ]


def test_quiz_wrong_answer_ends_quiz():
    store = StateStore()
    store.create_game(GROUP, Quiz.start(now=store.now(), bank=QUIZ_BANK))
    texts = run(make_router(store), group_transport(), message(".quizanswer rome"))
    assert texts == ["❌ *Wrong!* The correct answer is Paris"]
    assert store.get_game(GROUP, GameKind.QUIZ) is None


def test_endgame():
    store = StateStore()
    store.create_game(GROUP, Hangman.start(now=store.now(), word="cat"))
    texts = run(
        make_router(store),
        group_transport(),
        message(".endgame"),
        message(".endgame quiz"),
        message(".endgame hangman"),
    )
    assert texts == [
        "Usage: .endgame <ttt|hangman|quiz>",
        "ℹ️ No active quiz game.",
        "🛑 hangman game ended.",
    ]


def test_math():
    texts = run(
        make_router(),
        FakeTransport(),
        message(".math 2+3*4", conversation=ALICE),
        message(".calc 2**8", conversation=ALICE),
        message(".math", conversation=ALICE),
    )
    assert texts == ["🧮 2+3*4 = *14*", "❌ Invalid equation.", "Usage: .math 5+5*2"]


def test_text_tools():
    texts = run(
        make_router(),
        FakeTransport(),
        message(".reverse abc", conversation=ALICE),
        message(".countchars hi there", conversation=ALICE),
        message(".echo same", conversation=ALICE),
    )
    assert texts == ["cba", "📊 Text Analysis:\n• Characters: 8\n• Words: 2", "same"]


def test_toggles_need_group_admin():
    router = make_router()
    transport = group_transport()
    texts = run(
        router,
        transport,
        message(".antilink on", sender=BOB),
        message(".antilink maybe", sender=ALICE),
        message(".antilink on", sender=ALICE),
        message(".welcome off", sender=ALICE),
        message(".welcome on", sender=ALICE, conversation=ALICE),
    )
    assert texts == [
        "❌ Admin only command.",
        "Use: .antilink on / off",
        "✅ antilink enabled.",
        "❌ welcome disabled.",
        "❌ Group only command.",
    ]
    assert router.store.is_enabled(GROUP, "antilink")
    assert router.store.get_settings(GROUP)["welcome"] is False


def test_antilink_warns_then_removes():
    store = StateStore()
    store.set_setting(GROUP, "antilink", True)
    router = make_router(store)
    transport = group_transport()
    links = [message(f"see https://spam.example/{i}", sender=BOB, message_id=f"m{i}") for i in range(3)]
    texts = run(router, transport, message("https://ok.example", sender=ALICE), *links)

    assert len(transport.deleted) == 3
    assert transport.deleted[0] == (GROUP, "m0", BOB)
    assert texts[0] == "🚫 @15551230002 links are not allowed!\n⚠️ Warning: 1/3"
    assert texts[2] == "🚫 @15551230002 links are not allowed!\n⚠️ Warning: 3/3"
    assert texts[3] == "❌ @15551230002 removed after 3 warnings."
    assert transport.participant_updates == [(GROUP, [BOB], "remove")]
    assert store.get_warnings(GROUP, BOB) == 0


def test_antilink_without_bot_admin_only_warns():
    store = StateStore()
    store.set_setting(GROUP, "antilink", True)
    transport = group_transport(admins=(ALICE,))
    run(make_router(store), transport, *(message("http://x.example", sender=BOB) for _ in range(4)))
    assert transport.participant_updates == []
    assert store.get_warnings(GROUP, BOB) == 4


def test_warn_kicks_at_limit():
    router = make_router()
    transport = group_transport()
    texts = run(
        router,
        transport,
        message(".warn", sender=ALICE),
        message(".warn", sender=ALICE, mentions=[BOB]),
        message(".warn @15551230002", sender=ALICE),
        message(".warn", sender=ALICE, mentions=[BOB]),
    )
    assert texts[0] == "Tag a user to warn."
    assert texts[1] == "⚠️ @15551230002 has been warned. Total warnings: 1/3"
    assert texts[2] == "⚠️ @15551230002 has been warned. Total warnings: 2/3"
    assert texts[4] == "❌ @15551230002 removed after 3 warnings."
    assert transport.participant_updates == [(GROUP, [BOB], "remove")]


def test_membership_commands():
    transport = group_transport()
    texts = run(
        make_router(),
        transport,
        message(".kick", sender=ALICE),
        message(".promote", sender=ALICE, mentions=[BOB, CAROL]),
        message(".kick", sender=ALICE, mentions=[CAROL]),
    )
    assert texts == ["Usage: .kick @user", "✅ Promoted 2 user(s)", "👢 Removed 1 user(s)"]
    assert transport.participant_updates == [
        (GROUP, [BOB, CAROL], "promote"),
        (GROUP, [CAROL], "remove"),
    ]


def test_membership_needs_bot_admin():
    transport = group_transport(admins=(ALICE,))
    texts = run(make_router(), transport, message(".kick", sender=ALICE, mentions=[BOB]))
    assert texts == ["❌ Bot needs to be admin."]
    assert transport.participant_updates == []


def test_kickall_spares_admins_and_bot():
    transport = group_transport()
    texts = run(make_router(), transport, message(".kickall", sender=ALICE))
    assert transport.participant_updates == [(GROUP, [BOB], "remove"), (GROUP, [CAROL], "remove")]
    assert texts == ["✅ All non-admin members removed (2)."]


def test_group_admin_commands():
    transport = group_transport()
    texts = run(
        make_router(),
        transport,
        message(".close", sender=ALICE),
        message(".open", sender=ALICE),
        message(".setgroupname New Name", sender=ALICE),
        message(".gclink", sender=ALICE),
        message(".poll Lunch?|Pizza", sender=ALICE),
        message(".poll Lunch?|Pizza|Sushi", sender=ALICE),
    )
    assert transport.group_settings == [(GROUP, True), (GROUP, False)]
    assert transport.subjects == [(GROUP, "New Name")]
    assert texts[0] == "✅ Group is now closed (only admins can send messages)"
    assert texts[3] == "🔗 Group Link: https://chat.whatsapp.com/INVITE123"
    assert texts[4] == "❌ Provide at least 2 options."
    assert texts[5] == "📊 *Poll:* Lunch?\n\n1. Pizza\n2. Sushi"


def test_tagall_mentions_everyone():
    transport = group_transport()
    run(make_router(), transport, message(".tagall", sender=ALICE))
    sent = transport.sent[0][1]
    assert sent.mentions == [ALICE, BOB, CAROL, BOT]
    assert "@15551230003" in sent.text


def test_owner_only_commands():
    transport = FakeTransport()
    texts = run(
        make_router(),
        transport,
        message(".setbio hi", sender=ALICE, conversation=ALICE),
        message(".setbio busy", sender=OWNER, conversation=OWNER),
        message(".setnamebot Robo", sender=OWNER, conversation=OWNER),
    )
    assert texts[0] == "❌ Owner only command."
    assert transport.statuses == ["busy"]
    assert transport.profile_names == ["Robo"]


def test_broadcast_reports_sent_and_failed():
    store = StateStore()
    for conversation_id in (GROUP, ALICE, "status@broadcast"):
        store.record_message(conversation_id)
    transport = FakeTransport()
    transport.fail_send_to = [ALICE]
    run(make_router(store), transport, message(".broadcast hello all", sender=OWNER, conversation=OWNER))

    assert transport.texts(OWNER)[0] == "📢 Starting broadcast to all chats..."
    assert transport.texts(GROUP) == ["📢 *Broadcast from VORTE PRO*\n\nhello all"]
    assert transport.texts(OWNER)[-1] == "✅ Broadcast completed!\n• Sent: 2\n• Failed: 1"
    assert transport.texts("status@broadcast") == []


def test_gpt_uses_chat_service():
    services = FakeServices()
    texts = run(
        make_router(services=services),
        FakeTransport(),
        message(".gpt what is up", conversation=ALICE),
        message(".gpt", conversation=ALICE),
    )
    assert texts == ["answer: what is up", "Usage: .gpt <question>"]
    assert services.prompts == ["what is up"]


def test_unconfigured_services_are_reported():
    router = make_router(services=ExternalServices())
    texts = run(
        router,
        FakeTransport(),
        message(".gpt hello", conversation=ALICE),
        message(".imdb Alien", conversation=ALICE),
        message(".song lofi", conversation=ALICE),
    )
    assert texts == [
        "❌ OPENAI_API_KEY not set in environment.",
        "❌ IMDB_API_KEY not set in environment.",
        "❌ YOUTUBE_API_KEY not set in environment.",
    ]


def test_image_style_command():
    transport = FakeTransport()
    run(make_router(), transport, message(".matrix neon city", conversation=ALICE))
    assert transport.texts() == ["🎨 Generating matrix image...", '✨ *matrix image* for: "neon city"']
    assert transport.sent[1][1].image_url == "https://img.example/1.png"


def test_qr_replies_with_png():
    transport = FakeTransport()
    run(make_router(), transport, message(".qr hello world", conversation=ALICE))
    reply = transport.sent[0][1]
    assert reply.text == "QR Code for: hello world"
    assert reply.image_bytes.startswith(b"\x89PNG")


def test_bot_mention_answers_without_prefix():
    services = FakeServices()
    transport = FakeTransport()
    texts = run(make_router(services=services), transport, message("hey @BOT tell me a fact", conversation=ALICE))
    assert len(texts) == 1
    assert texts[0].startswith("answer: hey")
    assert services.prompts[0].endswith("tell me a fact")


def test_message_counting_feeds_stats():
    router = make_router()
    texts = run(
        router,
        group_transport(),
        message("hello"),
        message("again", sender=BOB),
        message(".stats", conversation=ALICE),
    )
    assert "• Active chats: 2" in texts[0]
    assert "• Total messages: 3" in texts[0]


def test_autoreact_and_status_view():
    store = StateStore()
    store.set_setting(GROUP, "autoreact", True)
    store.set_setting(ALICE, "autostatusview", True)
    transport = group_transport()
    run(make_router(store), transport, message("hi", message_id="g1"), message("yo", conversation=ALICE, message_id="d1"))
    assert [(c, m) for c, m, _ in transport.reactions] == [(GROUP, "g1")]
    assert transport.read == [(ALICE, "d1")]


def test_welcome_and_goodbye():
    store = StateStore()
    router = make_router(store)
    transport = group_transport()
    run(router, transport, ParticipantsUpdate(GROUP, [CAROL], "add"))
    assert transport.sent == []

    store.set_setting(GROUP, "welcome", True)
    run(router, transport, ParticipantsUpdate(GROUP, [CAROL], "add"), ParticipantsUpdate(GROUP, [CAROL], "remove"))
    welcome = transport.sent[0][1]
    assert "Welcome @15551230003" in welcome.text
    assert "Test Group" in welcome.text
    assert "GROUP RULES" in welcome.text
    assert welcome.image_url == DEFAULT_AVATAR_URL
    assert welcome.mentions == [CAROL]
    assert len(transport.sent) == 1

    store.set_setting(GROUP, "goodbye", True)
    run(router, transport, ParticipantsUpdate(GROUP, [CAROL], "remove"))
    assert "@15551230003 left the group" in transport.sent[-1][1].text


def test_antidelete_announcement():
    store = StateStore()
    router = make_router(store)
    transport = FakeTransport()
    run(router, transport, MessageRevoked(GROUP, BOB))
    assert transport.sent == []
    store.set_setting(GROUP, "antidelete", True)
    texts = run(router, transport, MessageRevoked(GROUP, BOB))
    assert texts == ["⚠️ Anti-Delete: Message deleted by @15551230002"]


def test_new_contacts_are_greeted_once_each():
    transport = FakeTransport()
    transport.fail_send_to = [CAROL]
    run(make_router(), transport, ContactsUpsert([ALICE, GROUP, "", CAROL, BOB]))
    assert [conv for conv, _ in transport.sent] == [ALICE, BOB]
    assert transport.sent[0][1].text.startswith("👋 Hello! I'm *VORTE PRO*")
