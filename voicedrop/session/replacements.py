"""Dictionary word replacement applied to raw transcriptions."""

import re
from typing import Mapping


def apply_replacements(text: str, replacements: Mapping[str, str]) -> str:
    """
    Replace whole-word, case-insensitive matches of each key with its value.

    Replacements run in mapping order, so a later entry sees the output of
    earlier ones.
    """
    for original, replacement in replacements.items():
        original = original.strip()
        if not original:
            continue
        pattern = r"(?<!\w)" + re.escape(original) + r"(?!\w)"
        text = re.sub(pattern, lambda _match: replacement, text, flags=re.IGNORECASE)
    return text
