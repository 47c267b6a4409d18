"""
Prompt assembly for the chat and outfit curation flows.

Turns UI-side conversation turns and wardrobe images into the role-tagged
`contents` list (and optional `systemInstruction`) of a Gemini request.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .image_normalize import parse_data_uri
from .schemas import ChatMessage

SYSTEM_INSTRUCTION = (
    "You are AestheFit Assistant, a friendly and helpful AI chatbot for a fashion and outfit curation app. "
    "Your goal is to assist users with their fashion-related questions, offer style advice, help them "
    "navigate the app, or provide general conversation. Be concise and positive. If asked about your "
    "capabilities, mention you can discuss fashion, suggest outfits based on descriptions, and help with "
    "app features. Do not refer to yourself as an AI language model if possible; be 'AestheFit Assistant'."
)

INITIAL_AI_GREETING = "Hi there! I'm AestheFit Assistant. How can I help you with your style today?"

PERSONA_SYSTEM_INSTRUCTION = "system_instruction"
PERSONA_LEADING_TURN = "leading_turn"

ROLE_BY_SENDER = {"user": "user", "ai": "model"}

HistoryTurn = Union[ChatMessage, Dict[str, str]]


def _text_content(role: str, text: str) -> Dict[str, Any]:
    return {"role": role, "parts": [{"text": text}]}


def _as_message(turn: HistoryTurn) -> ChatMessage:
    return turn if isinstance(turn, ChatMessage) else ChatMessage(**turn)


def history_for_model(messages: Optional[Iterable[HistoryTurn]]) -> List[ChatMessage]:
    """
    Returns the conversation as it should be sent to the model.

    The greeting the UI opens with is not part of the conversation, so a
    leading AI turn carrying exactly that text is dropped.
    """
    turns = [_as_message(m) for m in (messages or [])]
    if turns and turns[0].sender == "ai" and turns[0].text == INITIAL_AI_GREETING:
        turns = turns[1:]
    return turns


def build_chat_contents(history: Optional[Sequence[HistoryTurn]], user_input: str) -> List[Dict[str, Any]]:
    """
    Maps prior turns plus the new user message to Gemini contents.

    Input order is preserved and the new message is always last; an empty
    history yields a single-element list.
    """
    if not user_input or not user_input.strip():
        raise ValueError("Cannot send an empty message")

    contents = []
    for turn in history or []:
        msg = _as_message(turn)
        contents.append(_text_content(ROLE_BY_SENDER[msg.sender], msg.text))
    contents.append(_text_content("user", user_input))
    return contents


def build_system_instruction(text: str = SYSTEM_INSTRUCTION) -> Dict[str, Any]:
    return {"parts": [{"text": text}]}


def assemble_chat_prompt(
    history: Optional[Sequence[HistoryTurn]],
    user_input: str,
    *,
    persona_placement: str = PERSONA_SYSTEM_INSTRUCTION,
) -> Dict[str, Any]:
    """
    Builds the full chat prompt with the persona attached.

    Args:
        history: Prior turns (ChatMessage or {"sender", "text"} dicts).
        user_input: The new user message.
        persona_placement: "system_instruction" sends the persona in the separate
            systemInstruction field; "leading_turn" prepends it as the first user turn.

    Returns:
        dict: {"contents": [...], "system_instruction": {...} or None}
    """
    contents = build_chat_contents(history, user_input)

    if persona_placement == PERSONA_SYSTEM_INSTRUCTION:
        return {"contents": contents, "system_instruction": build_system_instruction()}
    if persona_placement == PERSONA_LEADING_TURN:
        return {"contents": [_text_content("user", SYSTEM_INSTRUCTION)] + contents, "system_instruction": None}
    raise ValueError(f"Unknown persona placement: {persona_placement}")


OUTFIT_SUGGESTION_PROMPT = """You are a personal stylist AI, helping users create outfits from their existing wardrobe.
Given the following clothing items and occasion, suggest a stylish outfit. Be as descriptive as possible.

Occasion: {occasion}

Clothing Items:"""

PERSON_IMAGE_NOTE = (
    "(Note: A reference image of the person has been provided. You can use this to tailor the textual "
    "suggestion if appropriate, e.g., considering styles that might suit their features, but primarily "
    "focus on the clothing items and occasion for the outfit description itself.)"
)

OUTFIT_IMAGE_PROMPT = (
    'Generate a high-quality, visually appealing image displaying the following outfit: "{suggestion}". '
    "The outfit should be shown on a simple, featureless mannequin or a generic figure, not a realistic "
    "person or fashion model. Focus on clearly showcasing the clothing items. The background should be "
    "neutral or simple studio-like. Ensure the entire outfit is visible."
)


def _inline_part(data_uri: str) -> Dict[str, Any]:
    mime_type, data = parse_data_uri(data_uri)
    return {"inline_data": {"mime_type": mime_type, "data": data}}


def build_outfit_suggestion_parts(
    occasion: str,
    clothing_items: Sequence[str],
    person_image_data_uri: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Stylist prompt text followed by one image part per clothing item."""
    parts: List[Dict[str, Any]] = [{"text": OUTFIT_SUGGESTION_PROMPT.format(occasion=occasion)}]
    for idx, item in enumerate(clothing_items, start=1):
        parts.append({"text": f"- Item {idx}:"})
        parts.append(_inline_part(item))

    if person_image_data_uri:
        parts.append({"text": PERSON_IMAGE_NOTE})
        parts.append(_inline_part(person_image_data_uri))
    return parts


def build_outfit_image_prompt(suggestion: str) -> List[Dict[str, Any]]:
    # The person image is deliberately not sent: outfits are rendered on a mannequin.
    return [{"text": OUTFIT_IMAGE_PROMPT.format(suggestion=suggestion)}]
