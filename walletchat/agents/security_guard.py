#!/usr/bin/env python3
"""
Security Guard Module
Detects recovery phrases pasted into the chat so they can be dropped before
any other stage sees, logs or stores them.
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet

from walletchat.utils.logger import get_logger

logger = get_logger("security_guard")

WORDLIST_PATH = Path(__file__).parent.parent / "data" / "bip39_english.txt"
SEED_LENGTHS = (12, 15, 18, 21, 24)
MIN_WORDLIST_RATIO = 0.75
REDACTED = "[redacted recovery phrase]"

_WORD_RE = re.compile(r"[a-zA-Z]+")


@lru_cache(maxsize=1)
def load_wordlist() -> FrozenSet[str]:
    """The 2048-word BIP39 English list."""
    words = frozenset(line.strip() for line in WORDLIST_PATH.read_text(encoding="utf-8").splitlines()
                      if line.strip())
    if len(words) != 2048:
        logger.warning(f"BIP39 wordlist has {len(words)} words, expected 2048")
    return words


def looks_like_seed_phrase(text: str) -> bool:
    """
    True when ``text`` is shaped like a mnemonic: 12, 15, 18, 21 or 24 words
    with at least 75% of them in the BIP39 English list.
    """
    # Numbered lists ("1. abandon 2. ability") are common when pasting
    words = [word.lower() for word in _WORD_RE.findall(text or "")]
    if len(words) not in SEED_LENGTHS:
        return False
    wordlist = load_wordlist()
    hits = sum(1 for word in words if word in wordlist)
    return hits / len(words) >= MIN_WORDLIST_RATIO
