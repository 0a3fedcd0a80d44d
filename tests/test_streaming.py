import pytest

from tagloop.errors import TurnCancelled
from tagloop.models import ParserState, Session
from tagloop.streaming import StreamDispatcher

RESPONSE = (
    "[reaction:heart][msg]Hi there [sticker:wave][/msg]"
    '[tool:search]{"query": "weather [msg]fake[/msg]"}[/tool]'
    "[quote:-1]Right[/quote] and more [link:https://example.com]Site[/link][undo:-2:-1]"
)

EXPECTED_CALLS = [
    ("reaction", "heart", None),
    ("sticker", "wave"),
    ("message", "Hi there", None),
    ("message", "Right and more", -1),
    ("link", "https://example.com", "Site"),
    ("undo", (-2, -1)),
]


async def _stream(platform, text: str, chunk_size: int) -> ParserState:  # noqa: ANN001
    dispatcher = StreamDispatcher(platform)
    state = ParserState()
    for start in range(0, len(text), chunk_size):
        await dispatcher.feed(state, text[start:start + chunk_size])
    await dispatcher.finish(state)
    return state


@pytest.mark.asyncio
@pytest.mark.parametrize("chunk_size", [1, 3, 7, len(RESPONSE)])
async def test_chunking_does_not_change_dispatched_actions(make_platform, chunk_size):
    platform = make_platform()

    state = await _stream(platform, RESPONSE, chunk_size)

    assert platform.calls == EXPECTED_CALLS
    assert [call.tool_name for call in state.tool_calls] == ["search"]
    assert state.tool_calls[0].params == {"query": "weather [msg]fake[/msg]"}


@pytest.mark.asyncio
async def test_repeated_processing_dispatches_once(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[reaction:wow][msg]hey[/msg]")
    await dispatcher.feed(state, "")
    await dispatcher.finish(state)
    await dispatcher.finish(state)

    assert platform.calls == [("reaction", "wow", None), ("message", "hey", None)]


@pytest.mark.asyncio
async def test_duplicate_actions_in_one_response_are_sent_once(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[sticker:cat] [sticker:cat] [reaction:1:like] [reaction:2:like]")
    await dispatcher.finish(state)

    assert platform.calls == [("sticker", "cat"), ("reaction", "like", 1), ("reaction", "like", 2)]


@pytest.mark.asyncio
async def test_new_parser_state_allows_redispatch(platform):
    dispatcher = StreamDispatcher(platform)

    for _ in range(2):
        state = ParserState()
        await dispatcher.feed(state, "[sticker:cat]")
        await dispatcher.finish(state)

    assert platform.calls == [("sticker", "cat"), ("sticker", "cat")]


@pytest.mark.asyncio
async def test_untagged_text_is_sent_as_plain_message(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[reaction:heart]Sure, ")
    await dispatcher.feed(state, "sounds good!")
    await dispatcher.finish(state)

    assert platform.calls == [("reaction", "heart", None), ("message", "Sure, sounds good!", None)]


@pytest.mark.asyncio
async def test_text_outside_messages_is_dropped_once_a_message_was_sent(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "thinking... [msg]Done[/msg]")
    await dispatcher.finish(state)

    assert platform.named("message") == [("Done", None)]


@pytest.mark.asyncio
async def test_table_outside_messages_is_still_delivered(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()
    table = "| a | b |\n|---|---|\n| 1 | 2 |"

    await dispatcher.feed(state, f"[msg]Here you go[/msg]\n{table}")
    await dispatcher.finish(state)

    assert platform.named("message") == [("Here you go", None), (table, None)]


@pytest.mark.asyncio
async def test_unknown_reaction_is_ignored(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[reaction:thumbsup][msg]ok[/msg]")
    await dispatcher.finish(state)

    assert platform.calls == [("message", "ok", None)]


@pytest.mark.asyncio
async def test_card_and_undo_payloads(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[card][card:u42][undo:-1][undo:all][msg]x[/msg]")
    await dispatcher.finish(state)

    assert platform.calls[:4] == [("card", None), ("card", "u42"), ("undo", -1), ("undo", "all")]


@pytest.mark.asyncio
async def test_cancelled_session_stops_dispatch(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()
    session = Session(session_id="s1")

    await dispatcher.feed(state, "[sticker:cat]", session)
    session.cancel()

    with pytest.raises(TurnCancelled):
        await dispatcher.feed(state, "[sticker:dog]", session)
    assert platform.calls == [("sticker", "cat")]


@pytest.mark.asyncio
async def test_collect_tool_calls_treats_buffer_as_complete(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[tool:ping]")
    assert state.tool_calls == []

    calls = dispatcher.collect_tool_calls(state)

    assert [call.tool_name for call in calls] == ["ping"]
    assert platform.calls == []


CONVERGENCE_BUFFERS = [
    RESPONSE,
    "[link:https://a.com] [msg]hi[/msg]",
    "[image:https://a.com/i.png] caption [reaction:wow] [msg]hi[/msg]",
    "[msg]a [quote:1]b[/quote] c[/msg]",
    "[msg]open [sticker:cat] [reaction:heart] still typing",
    "[reaction:like][quote:2]Yes[/quote] see you then",
    '[sticker:a] [tool:search]{"q": "[msg]x[/msg]"',
    '[TOOL:search]{"q": "[sticker:no]"}[/TOOL] [sticker:yes]',
    "[tool:ping] [link:https://a.com]Docs [sticker:book][/link] done",
    "[msg]hi [sticker:x][/msg][msg]hi[/msg]",
    "plain text only",
]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", CONVERGENCE_BUFFERS)
async def test_char_by_char_stream_matches_single_final_parse(make_platform, text):
    streamed = make_platform()
    streamed_state = await _stream(streamed, text, 1)

    whole = make_platform()
    whole_state = ParserState(buffer=text)
    await StreamDispatcher(whole).finish(whole_state)

    assert streamed.calls == whole.calls
    assert [c.raw_span for c in streamed_state.tool_calls] == [c.raw_span for c in whole_state.tool_calls]


@pytest.mark.asyncio
async def test_equal_message_text_from_distinct_blocks_is_sent_twice(platform):
    dispatcher = StreamDispatcher(platform)
    state = ParserState()

    await dispatcher.feed(state, "[msg]hi [sticker:x][/msg][msg]hi[/msg]")
    await dispatcher.finish(state)

    assert platform.calls == [("sticker", "x"), ("message", "hi", None), ("message", "hi", None)]


@pytest.mark.asyncio
async def test_nested_block_markup_is_never_delivered(make_platform):
    platform = make_platform()

    await _stream(platform, "[msg]a [quote:1]b[/quote] c[/msg]", 1)

    assert platform.calls == [("message", "a b c", None)]
