"""
Canned chat replies used instead of the live model (CHAT_MODE=scripted, or
when no Gemini API key is configured).
"""

import re
from typing import List, Tuple

# Checked in order; the first keyword found as a whole word wins.
SCRIPTED_REPLIES: List[Tuple[str, str]] = [
    ("hello", "Hello! I'm AestheFit Assistant. Ask me anything about your style or your wardrobe."),
    ("hi", "Hi there! What are we dressing for today?"),
    ("hey", "Hey! Need a hand putting an outfit together?"),
    ("help", "I can discuss fashion, suggest outfits based on descriptions, and help you find your way around the app."),
    ("upload", "Add clothing photos in 'Manage Your Wardrobe'. You can store up to 10 pieces."),
    ("save", "Once an outfit is curated, press 'Save Outfit' to keep it in your lookbook."),
    ("wedding", "For a wedding, try a tailored dress or a light suit in a soft colour. Skip white and keep accessories elegant."),
    ("interview", "For an interview, go for clean lines: a blazer, neutral tones and polished shoes always work."),
    ("date", "For a date, pair something you feel confident in with one standout piece, like a bold top or statement shoes."),
    ("party", "For a party, have fun with texture or colour. Sequins, satin or a bright jacket make an easy statement."),
    ("casual", "For a casual look, well-fitted jeans, a clean tee and white sneakers are hard to beat."),
    ("color", "Neutrals pair with everything. For contrast, try complementary colours like navy and camel or olive and rust."),
    ("colour", "Neutrals pair with everything. For contrast, try complementary colours like navy and camel or olive and rust."),
    ("thanks", "You're welcome! Happy styling."),
    ("thank", "You're welcome! Happy styling."),
    ("bye", "Goodbye! Come back any time you need outfit ideas."),
]

FALLBACK_REPLY = (
    "I'm not sure about that one, but I'd love to help with outfits. "
    "Try telling me the occasion you're dressing for."
)


def scripted_reply(user_input: str) -> str:
    text = (user_input or "").lower()
    words = set(re.findall(r"[a-z']+", text))
    for keyword, reply in SCRIPTED_REPLIES:
        if keyword in words:
            return reply
    return FALLBACK_REPLY
