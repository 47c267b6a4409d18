import os
import logging
from typing import Optional, Sequence

from . import gemini
from .prompts import PERSONA_SYSTEM_INSTRUCTION, assemble_chat_prompt, history_for_model
from .schemas import ChatResponse
from .scripted_replies import scripted_reply

logger = logging.getLogger(__name__)


def _use_scripted(api_key: Optional[str]) -> bool:
    if os.getenv("CHAT_MODE", "live").strip().lower() == "scripted":
        return True
    if not api_key:
        logger.warning("GEMINI_API_KEY or GOOGLE_API_KEY not set. Using scripted chat replies.")
        return True
    return False


async def chat_with_bot(user_input: str, history: Optional[Sequence] = None, *, api_key: Optional[str] = None) -> ChatResponse:
    """
    Answers one chat message as AestheFit Assistant.

    Args:
        user_input: The latest message from the user.
        history: Prior turns, oldest first (ChatMessage or {"sender", "text"} dicts).
        api_key: Overrides the key read from the environment.

    Returns:
        ChatResponse with the reply text and whether it came from the model or the script.

    Raises:
        ValueError: empty message.
        gemini.ContentBlockedError / gemini.EmptyResponseError: the model declined or said nothing.
    """
    api_key = api_key or gemini.get_api_key()
    turns = history_for_model(history)
    prompt = assemble_chat_prompt(
        turns,
        user_input,
        persona_placement=os.getenv("CHAT_PERSONA_PLACEMENT", PERSONA_SYSTEM_INSTRUCTION),
    )

    if _use_scripted(api_key):
        return ChatResponse(ai_response=scripted_reply(user_input), source="scripted")

    model = os.getenv("GEMINI_CHAT_MODEL", "gemini-2.0-flash")
    data = await gemini.generate_content(
        prompt["contents"],
        model=model,
        system_instruction=prompt["system_instruction"],
        generation_config={"temperature": float(os.getenv("CHAT_TEMPERATURE", "0.7"))},
        api_key=api_key,
    )
    ai_response = gemini.extract_text(data)
    logger.info(f"Chat reply from {model}: {len(ai_response)} chars for {len(turns)} prior turn(s)")
    return ChatResponse(ai_response=ai_response, source="model")
