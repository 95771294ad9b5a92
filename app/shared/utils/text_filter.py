import re
from typing import Callable, Dict, Iterable

TextFilter = Callable[[str], Dict]


def make_word_filter(blocked_words: Iterable[str]) -> TextFilter:
    """Dictionary matcher: blocked words are masked with asterisks, case-insensitive, whole words only"""
    words = sorted({w.strip().lower() for w in blocked_words if w and w.strip()}, key=len, reverse=True)
    if not words:
        return lambda text: {"clean": True, "filtered_text": text}

    pattern = re.compile(r"\b(" + "|".join(map(re.escape, words)) + r")\b", re.IGNORECASE)

    def filter_text(text: str) -> Dict:
        filtered = pattern.sub(lambda m: "*" * len(m.group(0)), text)
        return {"clean": filtered == text, "filtered_text": filtered}

    return filter_text
