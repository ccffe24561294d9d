"""
Detects affection in the latest user turn that is directed at the assistant.

A match makes the chat service append a mirroring clause to the system
prompt for that one turn. Affection about third parties ("I love pizza")
must not match.
"""

import re
from typing import Iterable, Optional

# Phrases that already carry their target
DIRECTED_PHRASES = (
    "miss you",
    "love you",
    "adore you",
    "love u",
    "luv you",
    "luv u",
    "thinking of you",
    "thinking about you",
    "crazy about you",
    "proud of you",
)

KEYWORDS = ("love", "adore", "miss", "like", "luv", "heart", "crush")

SECOND_PERSON = ("you", "u", "your", "ya")

CONTEXT_WINDOW = 50

_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def _target_pattern(assistant_names: Iterable[str]) -> str:
    names = sorted({name.lower() for name in assistant_names if name}, key=len, reverse=True)
    alternatives = [re.escape(name) for name in names] + list(SECOND_PERSON)
    return "(?:" + "|".join(alternatives) + ")"


def detect_affection(text: str, assistant_names: Iterable[str] = ("ask-javier", "javier")) -> Optional[str]:
    """
    Return the affectionate phrase aimed at the assistant, or None.

    The most specific match is returned: "love you" rather than "love".
    """
    normalized = normalize(text)
    if not normalized:
        return None

    for phrase in DIRECTED_PHRASES:
        match = re.search(rf"\b{re.escape(phrase)}\b", normalized)
        if match:
            return match.group(0)

    target = _target_pattern(assistant_names)
    target_re = re.compile(rf"(?<![\w-]){target}(?![\w-])")

    for keyword in KEYWORDS:
        # "i love you", "adore javier"
        directed = re.search(rf"\b(?:i )?({keyword} {target})(?![\w-])", normalized)
        if directed:
            return directed.group(1)

        # "javier, i really love ..."
        if re.search(rf"(?<![\w-]){target}(?![\w-]).{{0,{CONTEXT_WINDOW}}}\b{keyword}\b", normalized):
            return keyword

        for occurrence in re.finditer(rf"\b{keyword}\b", normalized):
            window = normalized[max(0, occurrence.start() - CONTEXT_WINDOW) : occurrence.end() + CONTEXT_WINDOW]
            if target_re.search(window):
                return keyword

    return None
