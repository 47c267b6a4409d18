import pytest

from services.prompts import (
    INITIAL_AI_GREETING,
    SYSTEM_INSTRUCTION,
    assemble_chat_prompt,
    build_chat_contents,
    build_outfit_image_prompt,
    build_outfit_suggestion_parts,
    history_for_model,
)
from services.schemas import ChatMessage


def texts(contents):
    return [(c["role"], c["parts"][0]["text"]) for c in contents]


def test_history_then_new_message_last():
    history = [("user", "hi")]
    contents = build_chat_contents([{"sender": s, "text": t} for s, t in history], "hello")
    assert texts(contents) == [("user", "hi"), ("user", "hello")]


def test_empty_history_yields_single_turn():
    assert texts(build_chat_contents([], "hello")) == [("user", "hello")]
    assert texts(build_chat_contents(None, "hello")) == [("user", "hello")]


def test_order_preserved_and_ai_maps_to_model():
    history = [
        ChatMessage(sender="user", text="what goes with jeans?"),
        ChatMessage(sender="ai", text="A white tee."),
        ChatMessage(sender="user", text="and shoes?"),
        ChatMessage(sender="ai", text="White sneakers."),
    ]
    contents = build_chat_contents(history, "thanks")
    assert texts(contents) == [
        ("user", "what goes with jeans?"),
        ("model", "A white tee."),
        ("user", "and shoes?"),
        ("model", "White sneakers."),
        ("user", "thanks"),
    ]


def test_duplicate_turns_are_kept():
    history = [{"sender": "user", "text": "same"}, {"sender": "user", "text": "same"}]
    assert len(build_chat_contents(history, "same")) == 3


@pytest.mark.parametrize("message", ["", "   "])
def test_empty_outgoing_message_rejected(message):
    with pytest.raises(ValueError):
        build_chat_contents([], message)


def test_persona_as_system_instruction():
    prompt = assemble_chat_prompt([{"sender": "user", "text": "hi"}], "hello")
    assert texts(prompt["contents"]) == [("user", "hi"), ("user", "hello")]
    assert prompt["system_instruction"] == {"parts": [{"text": SYSTEM_INSTRUCTION}]}


def test_persona_as_leading_turn():
    prompt = assemble_chat_prompt([{"sender": "user", "text": "hi"}], "hello", persona_placement="leading_turn")
    assert prompt["system_instruction"] is None
    assert texts(prompt["contents"]) == [("user", SYSTEM_INSTRUCTION), ("user", "hi"), ("user", "hello")]


def test_unknown_persona_placement():
    with pytest.raises(ValueError):
        assemble_chat_prompt([], "hello", persona_placement="footer")


def test_history_for_model_drops_leading_greeting():
    messages = [
        {"sender": "ai", "text": INITIAL_AI_GREETING},
        {"sender": "user", "text": "hi"},
        {"sender": "ai", "text": INITIAL_AI_GREETING},
    ]
    turns = history_for_model(messages)
    assert [(t.sender, t.text) for t in turns] == [("user", "hi"), ("ai", INITIAL_AI_GREETING)]


def test_history_for_model_keeps_other_ai_openers():
    messages = [{"sender": "ai", "text": "Welcome back!"}]
    assert len(history_for_model(messages)) == 1
    assert history_for_model(None) == []


def test_outfit_suggestion_parts(sample_data_uri):
    parts = build_outfit_suggestion_parts("Casual Brunch", [sample_data_uri, sample_data_uri])
    assert "Occasion: Casual Brunch" in parts[0]["text"]
    inline = [p for p in parts if "inline_data" in p]
    assert len(inline) == 2
    assert inline[0]["inline_data"]["mime_type"] == "image/png"
    assert not any("reference image of the person" in p.get("text", "") for p in parts)


def test_outfit_suggestion_parts_with_person(sample_data_uri):
    parts = build_outfit_suggestion_parts("Formal Dinner", [sample_data_uri], sample_data_uri)
    assert len([p for p in parts if "inline_data" in p]) == 2
    assert any("reference image of the person" in p.get("text", "") for p in parts)


def test_outfit_suggestion_parts_rejects_bad_uri():
    with pytest.raises(ValueError):
        build_outfit_suggestion_parts("Party", ["not-a-data-uri"])


def test_outfit_image_prompt_mentions_mannequin():
    parts = build_outfit_image_prompt("Blue jeans with a white shirt")
    assert len(parts) == 1
    assert '"Blue jeans with a white shirt"' in parts[0]["text"]
    assert "mannequin" in parts[0]["text"]
