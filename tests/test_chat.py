import pytest

from assistant.api.chat import MessageValidationError, start_chat, validate_messages
from assistant.core.state import ChatMessage
from assistant.core.stream_adapter import GENERIC_ERROR_MESSAGE
from assistant.llm.client import GenerationError

from conftest import ScriptedGeneration, collect, make_generation


def _user(text="hi"):
    return {"role": "user", "content": text}


# =========================================================
# Validation
# =========================================================

@pytest.mark.parametrize(
    "messages, message",
    [
        ([], "Messages array is required and cannot be empty"),
        (None, "Messages array is required and cannot be empty"),
        ("hello", "Messages array is required and cannot be empty"),
        ([_user()] * 101, "Too many messages. Maximum 100 messages allowed."),
        ([{"role": "user"}], "Each message must have 'role' and 'content' fields"),
        ([{"role": "user", "content": ""}], "Each message must have 'role' and 'content' fields"),
        ([{"role": "admin", "content": "hi"}], "Message role must be 'user', 'assistant', or 'system'"),
        ([{"role": "user", "content": 42}], "Message content must be a string"),
        ([_user("x" * 10001)], "Message content too long. Maximum 10000 characters."),
        ([{"role": "assistant", "content": "hello"}], "No user message found"),
    ],
)
def test_validation_rejects(messages, message):
    with pytest.raises(MessageValidationError) as exc_info:
        validate_messages(messages)
    assert str(exc_info.value) == message


def test_validation_accepts_limits_and_maps_roles():
    messages = [_user("x" * 10000)] + [{"role": "system", "content": "note"}] * 99

    history = validate_messages(messages)

    assert len(history) == 100
    assert history[0] == ChatMessage("user", "x" * 10000)
    assert history[1] == ChatMessage("assistant", "note")


def test_invalid_input_touches_no_collaborator(make_workflow):
    generation = ScriptedGeneration()
    workflow = make_workflow(generation)

    with pytest.raises(MessageValidationError):
        start_chat([_user()] * 101, workflow)

    assert generation.invoke_calls == []
    assert workflow.deps.rate_limiter.status("classification").remaining == 60


# =========================================================
# End to end
# =========================================================

def test_multi_topic_turn_streams_synthesis(make_workflow):
    generation = make_generation(
        ["da-desk", "martrust"],
        {"da-desk": "Ports.", "martrust": "Payments."},
        stream_chunks=[ChatMessage("assistant", "Hello"), ChatMessage("assistant", " world"), "!"],
    )
    workflow = make_workflow(generation)

    fragments = collect(start_chat([_user("Port costs and paying crew?")], workflow))

    assert fragments == [{"content": "Hello"}, {"content": " world"}, {"content": "!"}, {"done": True}]


def test_single_topic_turn_sends_topic_answer(make_workflow):
    generation = make_generation(["shipserv"], {"shipserv": "Send an RFQ to several suppliers."})
    workflow = make_workflow(generation)

    fragments = collect(start_chat([_user("How do I find suppliers?")], workflow))

    assert fragments == [{"content": "Send an RFQ to several suppliers."}, {"done": True}]
    assert len(generation.invoke_calls) == 2


def test_off_topic_turn_uses_fallback(make_workflow):
    generation = make_generation([], default="I can help with DA-Desk, MarTrust and ShipServ.")
    workflow = make_workflow(generation)

    fragments = collect(start_chat([_user("What's the weather?")], workflow))

    assert fragments == [{"content": "I can help with DA-Desk, MarTrust and ShipServ."}, {"done": True}]


def test_topic_failure_yields_single_error(make_workflow):
    generation = make_generation(
        ["da-desk", "martrust"],
        {"da-desk": "Ports."},
        invoke_error=("MarTrust", GenerationError("openai", "provider rejected request", 500)),
        stream_chunks=["never"],
    )
    workflow = make_workflow(generation)

    fragments = collect(start_chat([_user("Port costs and paying crew?")], workflow))

    assert fragments == [{"error": GENERIC_ERROR_MESSAGE}]
    assert generation.stream_calls == []


def test_synthesis_stream_failure_after_partial_output(make_workflow):
    generation = make_generation(
        ["da-desk", "shipserv"],
        {"da-desk": "Ports.", "shipserv": "Suppliers."},
        stream_chunks=["Partial"],
        stream_error=GenerationError("openai", "transport error"),
    )
    workflow = make_workflow(generation)

    fragments = collect(start_chat([_user("Ports and suppliers?")], workflow))

    assert fragments == [{"content": "Partial"}, {"error": GENERIC_ERROR_MESSAGE}]
    assert not any(f.get("done") for f in fragments)


def test_exhausted_classification_quota_reports_wait(make_workflow, rate_limiter):
    for _ in range(60):
        rate_limiter.check("classification")
    workflow = make_workflow(make_generation(["da-desk"]))

    fragments = collect(start_chat([_user()], workflow))

    assert len(fragments) == 1
    assert fragments[0]["error"].startswith("Rate limit exceeded. Please wait 60 seconds")
