"""
Text Normalizer Utility
Folds Unicode punctuation, digit and whitespace variants to ASCII so that
every downstream pattern can assume plain ASCII punctuation.
"""

import re
import unicodedata

_PUNCTUATION_MAP = {
    "‘": "'", "’": "'", "‚": "'", "‛": "'", "′": "'",
    "“": '"', "”": '"', "„": '"', "″": '"',
    "«": '"', "»": '"',
    "‐": "-", "‑": "-", "‒": "-", "–": "-", "—": "-",
    "―": "-", "−": "-",
    "…": "...",
    "،": ",",  # Arabic comma
    "؟": "?",  # Arabic question mark
    "٫": ".",  # Arabic decimal separator
    "٬": ",",  # Arabic thousands separator
    "\u200b": "", "\u200c": "", "\u200d": "", "\ufeff": "",
}

_SPACE_CHARS = "               　"

_TRANSLATION = str.maketrans({**_PUNCTUATION_MAP, **{ch: " " for ch in _SPACE_CHARS}})
_WHITESPACE_RE = re.compile(r"\s+")


def _fold_digits(text: str) -> str:
    """Map non-ASCII decimal digits (Arabic-Indic, fullwidth) to ASCII."""
    if text.isascii():
        return text
    folded = []
    for ch in text:
        value = unicodedata.decimal(ch, None) if not ch.isascii() else None
        folded.append(str(value) if value is not None else ch)
    return "".join(folded)


def normalize_text(text: str) -> str:
    """Normalize punctuation variants and collapse whitespace."""
    if not text:
        return ""
    result = text.translate(_TRANSLATION)
    result = _fold_digits(result)
    result = _WHITESPACE_RE.sub(" ", result)
    return result.strip()


def normalize_for_matching(text: str) -> str:
    """Normalized, lowercased form used by keyword classifiers."""
    return normalize_text(text).lower()
