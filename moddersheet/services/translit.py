from __future__ import annotations

from typing import Dict, List

# Apostrophe variants used for o' / g'
_APOSTROPHES = ("'", "‘", "’", "ʻ", "ʼ", "`")

LATIN_TO_CYRILLIC: Dict[str, str] = {
    "yo'": "йў",
    "sh": "ш",
    "ch": "ч",
    "yo": "ё",
    "yu": "ю",
    "ya": "я",
    "ts": "ц",
    "zh": "ж",
    "o'": "ў",
    "g'": "ғ",
    "a": "а",
    "b": "б",
    "c": "ц",
    "d": "д",
    "e": "е",
    "f": "ф",
    "g": "г",
    "h": "х",
    "i": "и",
    "j": "ж",
    "k": "к",
    "l": "л",
    "m": "м",
    "n": "н",
    "o": "о",
    "p": "п",
    "q": "қ",
    "r": "р",
    "s": "с",
    "t": "т",
    "u": "у",
    "v": "в",
    "w": "в",
    "x": "х",
    "y": "й",
    "z": "з",
}

CYRILLIC_TO_LATIN: Dict[str, str] = {
    "а": "a",
    "б": "b",
    "в": "v",
    "г": "g",
    "д": "d",
    "е": "e",
    "ё": "yo",
    "ж": "j",
    "з": "z",
    "и": "i",
    "й": "y",
    "к": "k",
    "л": "l",
    "м": "m",
    "н": "n",
    "о": "o",
    "п": "p",
    "р": "r",
    "с": "s",
    "т": "t",
    "у": "u",
    "ф": "f",
    "х": "x",
    "ц": "ts",
    "ч": "ch",
    "ш": "sh",
    "щ": "sh",
    "ъ": "",
    "ы": "i",
    "ь": "",
    "э": "e",
    "ю": "yu",
    "я": "ya",
    "ў": "o'",
    "қ": "q",
    "ғ": "g'",
    "ҳ": "h",
}


def _normalize_apostrophes(text: str) -> str:
    for ch in _APOSTROPHES[1:]:
        text = text.replace(ch, "'")
    return text


def _substitute(text: str, table: Dict[str, str]) -> str:
    longest = max(len(k) for k in table)
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        for size in range(longest, 0, -1):
            chunk = text[i:i + size]
            if len(chunk) == size and chunk in table:
                out.append(table[chunk])
                i += size
                break
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def to_cyrillic(text: str) -> str:
    return _substitute(_normalize_apostrophes((text or "").lower()), LATIN_TO_CYRILLIC)


def to_latin(text: str) -> str:
    return _substitute((text or "").lower(), CYRILLIC_TO_LATIN)


def search_variants(query: str) -> List[str]:
    """Distinct lower-cased forms of a query: as typed, Cyrillic and Latin."""
    raw = _normalize_apostrophes((query or "").lower())
    variants: List[str] = []
    for v in (raw, to_cyrillic(raw), to_latin(raw)):
        if v not in variants:
            variants.append(v)
    return variants


def matches(text: str, variants: List[str]) -> bool:
    low = _normalize_apostrophes((text or "").lower())
    return any(v in low for v in variants)
