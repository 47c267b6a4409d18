import pytest

from conftest import DummyGeminiResponse, text_response
from services import chat, gemini
from services.prompts import INITIAL_AI_GREETING, SYSTEM_INSTRUCTION
from services.scripted_replies import FALLBACK_REPLY, scripted_reply


@pytest.fixture(autouse=True)
def live_mode(monkeypatch):
    monkeypatch.delenv("CHAT_MODE", raising=False)
    monkeypatch.delenv("CHAT_PERSONA_PLACEMENT", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")


@pytest.mark.asyncio
async def test_chat_sends_history_and_returns_text(gemini_calls):
    gemini_calls["responses"].append(DummyGeminiResponse(data=text_response("Try a linen shirt.")))

    history = [
        {"sender": "ai", "text": INITIAL_AI_GREETING},
        {"sender": "user", "text": "hi"},
        {"sender": "ai", "text": "Hello!"},
    ]
    result = await chat.chat_with_bot("What should I wear to brunch?", history)

    assert result.ai_response == "Try a linen shirt."
    assert result.source == "model"
    payload = gemini_calls["requests"][0]["payload"]
    assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
    assert payload["contents"][-1]["parts"][0]["text"] == "What should I wear to brunch?"
    assert payload["systemInstruction"]["parts"][0]["text"] == SYSTEM_INSTRUCTION
    assert payload["generationConfig"]["temperature"] == 0.7
    assert "gemini-2.0-flash:generateContent" in gemini_calls["requests"][0]["url"]


@pytest.mark.asyncio
async def test_chat_leading_turn_persona(gemini_calls, monkeypatch):
    monkeypatch.setenv("CHAT_PERSONA_PLACEMENT", "leading_turn")
    gemini_calls["responses"].append(DummyGeminiResponse(data=text_response("Sure!")))

    await chat.chat_with_bot("hello")

    payload = gemini_calls["requests"][0]["payload"]
    assert "systemInstruction" not in payload
    assert payload["contents"][0]["parts"][0]["text"] == SYSTEM_INSTRUCTION
    assert len(payload["contents"]) == 2


@pytest.mark.asyncio
async def test_chat_blocked(gemini_calls):
    gemini_calls["responses"].append(
        DummyGeminiResponse(data={"candidates": [{"finishReason": "SAFETY", "content": {"parts": []}}]})
    )
    with pytest.raises(gemini.ContentBlockedError):
        await chat.chat_with_bot("something unsafe")


@pytest.mark.asyncio
async def test_chat_empty(gemini_calls):
    gemini_calls["responses"].append(DummyGeminiResponse(data={"candidates": [{"finishReason": "STOP"}]}))
    with pytest.raises(gemini.EmptyResponseError):
        await chat.chat_with_bot("hello")


@pytest.mark.asyncio
async def test_chat_scripted_mode_skips_model(gemini_calls, monkeypatch):
    monkeypatch.setenv("CHAT_MODE", "scripted")
    result = await chat.chat_with_bot("Any ideas for a wedding?")
    assert result.source == "scripted"
    assert "wedding" in result.ai_response.lower()
    assert gemini_calls["requests"] == []


@pytest.mark.asyncio
async def test_chat_without_api_key_uses_script(gemini_calls, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    result = await chat.chat_with_bot("thanks!")
    assert result.source == "scripted"
    assert gemini_calls["requests"] == []


@pytest.mark.asyncio
async def test_chat_rejects_empty_message(gemini_calls):
    with pytest.raises(ValueError):
        await chat.chat_with_bot("   ")


def test_scripted_reply_matches_whole_words():
    assert scripted_reply("Hello there") == scripted_reply("hello")
    # "this" must not match "hi"
    assert scripted_reply("this is odd") == FALLBACK_REPLY
    assert scripted_reply("") == FALLBACK_REPLY
