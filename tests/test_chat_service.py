import pytest

from services.chat_service import SYSTEM_INSTRUCTION, ChatService, build_context, derive_title
from services.errors import ChatTimeout, InvalidInput, NotFound, UpstreamBlocked, UpstreamEmpty, UpstreamError
from services.llm_client import LLMReply


def test_build_context_maps_roles_and_drops_errors():
    history = [
        {"role": "user", "content": "Tell me about Google"},
        {"role": "bot", "content": "Google is a search company."},
        {"role": "error", "content": "Something failed"},
        {"role": "user", "content": "   "},
    ]
    messages = build_context(history, "What is its revenue?")
    assert messages[0] == {"role": "system", "content": SYSTEM_INSTRUCTION}
    assert messages[1:] == [
        {"role": "user", "content": "Tell me about Google"},
        {"role": "assistant", "content": "Google is a search company."},
        {"role": "user", "content": "What is its revenue?"},
    ]


def test_build_context_limits_history():
    history = [{"role": "user", "content": f"q{i}"} for i in range(30)]
    messages = build_context(history, "latest", limit=5)
    assert [m["content"] for m in messages[1:]] == ["q25", "q26", "q27", "q28", "q29", "latest"]


def test_build_context_collapses_same_role():
    history = [
        {"role": "bot", "content": "Welcome!"},
        {"role": "user", "content": "first"},
        {"role": "user", "content": "second"},
        {"role": "bot", "content": "answer"},
        {"role": "user", "content": "unanswered"},
    ]
    messages = build_context(history, "now", collapse_same_role=True)
    assert [(m["role"], m["content"]) for m in messages[1:]] == [
        ("user", "second"),
        ("assistant", "answer"),
        ("user", "now"),
    ]


def test_derive_title():
    assert derive_title("  What is the tallest mountain on planet Earth today?  ") == \
        "What is the tallest mountain on planet E"
    assert derive_title("Hi", "Greeting") == "Greeting"
    assert derive_title("Hi", "   ") == "Hi"


async def test_generate_answer_formats_reply(make_llm, conversation_store):
    llm = make_llm("**One.** Two.\n\nThree!")
    service = ChatService(conversation_store, llm)
    answer, reply = await service.generate_answer("Count", [])
    assert answer == "1. One.\n2. Two.\n3. Three!"
    assert llm.calls[0][-1] == {"role": "user", "content": "Count"}


async def test_generate_answer_rejects_blank_prompt(make_llm, conversation_store):
    llm = make_llm()
    with pytest.raises(InvalidInput):
        await ChatService(conversation_store, llm).generate_answer("   ")
    assert llm.calls == []


async def test_generate_answer_without_client(conversation_store):
    with pytest.raises(UpstreamError):
        await ChatService(conversation_store, None).generate_answer("Hello")


async def test_generate_answer_times_out(make_llm, conversation_store):
    service = ChatService(conversation_store, make_llm("late", delay=0.5), timeout=0.05)
    with pytest.raises(ChatTimeout):
        await service.generate_answer("Hello")


async def test_generate_answer_empty_after_formatting(make_llm, conversation_store):
    service = ChatService(conversation_store, make_llm("<p>***</p>"))
    with pytest.raises(UpstreamEmpty):
        await service.generate_answer("Hello")


async def test_new_turn_creates_conversation(make_llm, conversation_store):
    service = ChatService(conversation_store, make_llm(LLMReply("Paris.", title="French capital")))
    turn = await service.submit_turn("u1", None, "Capital of France?")
    assert turn.created
    assert turn.title == "French capital"
    conv = conversation_store.get_owned(turn.conversation_id, "u1")
    assert [(m["role"], m["content"]) for m in conv["messages"]] == [
        ("user", "Capital of France?"), ("bot", "Paris.")
    ]
    assert conv["messages"][0]["timestamp"] <= conv["messages"][1]["timestamp"]


async def test_existing_turn_uses_stored_history(make_llm, conversation_store):
    llm = make_llm("Google is a company.", "About 300 billion.")
    service = ChatService(conversation_store, llm)
    first = await service.submit_turn("u1", None, "Tell me about Google")
    second = await service.submit_turn("u1", first.conversation_id, "What is its revenue?")
    assert not second.created
    assert second.title == first.title
    assert {"role": "assistant", "content": "Google is a company."} in llm.calls[1]
    assert len(conversation_store.get_owned(first.conversation_id, "u1")["messages"]) == 4


@pytest.mark.parametrize("failure", [UpstreamBlocked(), UpstreamEmpty(), UpstreamError(), ChatTimeout()])
async def test_failed_turn_leaves_no_trace(make_llm, conversation_store, failure):
    llm = make_llm("Fine.", failure)
    service = ChatService(conversation_store, llm)
    first = await service.submit_turn("u1", None, "Hello")
    before = conversation_store.get_owned(first.conversation_id, "u1")

    with pytest.raises(type(failure)):
        await service.submit_turn("u1", first.conversation_id, "Again")
    assert conversation_store.get_owned(first.conversation_id, "u1") == before


async def test_failed_first_turn_creates_nothing(make_llm, conversation_store):
    service = ChatService(conversation_store, make_llm(UpstreamError()))
    with pytest.raises(UpstreamError):
        await service.submit_turn("u1", None, "Hello")
    assert conversation_store.list_for_user("u1") == []


async def test_turn_on_foreign_conversation(make_llm, conversation_store):
    llm = make_llm()
    service = ChatService(conversation_store, llm)
    conv = conversation_store.create("owner")
    with pytest.raises(NotFound):
        await service.submit_turn("intruder", conv["id"], "Hello")
    assert llm.calls == []


@pytest.mark.parametrize("failure", [KeyError("candidates"), RuntimeError("socket closed"), AttributeError("x")])
async def test_unexpected_model_error_is_upstream_error(make_llm, conversation_store, failure):
    service = ChatService(conversation_store, make_llm(failure))
    with pytest.raises(UpstreamError):
        await service.generate_answer("Hello")
