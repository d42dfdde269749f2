"""
OCR Error Correction for Clinical Text
Corrects domain vocabulary using an exact dictionary pass and
Levenshtein fuzzy matching against canonical terms
"""

import logging
import math
import re
from collections.abc import Mapping
from functools import lru_cache
from types import MappingProxyType
from typing import List, Optional, Tuple

import pandas as pd
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from .config import DICTIONARY_PATH, FUZZY_MAX_EDIT_RATIO
from .exceptions import DictionaryError

logger = logging.getLogger(__name__)

# Blanket glyph confusions, applied across the whole string in this order
GLYPH_SUBSTITUTIONS = [
    (re.compile(r'rn'), 'm'),
    (re.compile(r'\bl\b'), 'I'),
    (re.compile(r'0'), 'o'),
    (re.compile(r'1'), 'l'),
    (re.compile(r'5'), 's'),
]

SENTENCE_BREAK = re.compile(r'([.!?]\s+)')
TOKEN_PARTS = re.compile(r'^(\W*)(.*?)(\W*)$', re.DOTALL)
TERM_PATTERN = re.compile(r'^\w+$')
WORD = re.compile(r'\w+')


def fix_glyphs(text: str) -> str:
    """
    Apply GLYPH_SUBSTITUTIONS until the text stops changing
    A digit turned into a standalone `l` is picked up by the next round
    """
    previous = None
    while text != previous:
        previous = text
        for pattern, replacement in GLYPH_SUBSTITUTIONS:
            text = pattern.sub(replacement, text)
    return text


def lower_keeping_pronoun(text: str) -> str:
    """Lower-case every word except a standalone `I`"""
    return WORD.sub(lambda m: m.group(0) if m.group(0) == 'I' else m.group(0).lower(), text)


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character inserts, deletes and substitutions"""
    return Levenshtein.distance(a, b)


def max_edit_distance(word: str, ratio: float = FUZZY_MAX_EDIT_RATIO) -> int:
    """Largest accepted distance for a word: ceil(ratio * length)"""
    return math.ceil(round(len(word) * ratio, 6))


def capitalize_sentences(text: str) -> str:
    """Uppercase the first character after each sentence break"""
    parts = SENTENCE_BREAK.split(text)
    # split() with a capture group alternates segment, separator, segment, ...
    for i in range(0, len(parts), 2):
        if parts[i]:
            parts[i] = parts[i][0].upper() + parts[i][1:]
    return ''.join(parts)


class CorrectionDictionary(Mapping):
    """
    Read-only misspelling -> canonical term mapping

    Every canonical term also maps to itself, so substitution is
    idempotent. A canonical term may not double as a misspelling of a
    different term.
    """

    def __init__(self, entries):
        normalized = {}
        for wrong, canonical in dict(entries).items():
            wrong = str(wrong).strip().lower()
            canonical = str(canonical).strip().lower()
            if not TERM_PATTERN.match(wrong) or not TERM_PATTERN.match(canonical):
                raise DictionaryError(f"Invalid dictionary entry: {wrong!r} -> {canonical!r}")
            normalized[wrong] = canonical

        for canonical in list(dict.fromkeys(normalized.values())):
            mapped = normalized.setdefault(canonical, canonical)
            if mapped != canonical:
                raise DictionaryError(
                    f"'{canonical}' is a canonical term but also maps to '{mapped}'"
                )

        self._entries = MappingProxyType(normalized)
        self.terms = tuple(dict.fromkeys(normalized.values()))

        keys = sorted(normalized, key=len, reverse=True)
        self._pattern = re.compile(
            r'\b(?:' + '|'.join(map(re.escape, keys)) + r')\b', re.IGNORECASE
        ) if keys else None

    @classmethod
    def from_csv(cls, path):
        """Load a two-column CSV: misspelling, canonical"""
        try:
            frame = pd.read_csv(path, dtype=str)
        except (OSError, ValueError) as e:
            raise DictionaryError(f"Could not load correction dictionary {path}: {e}") from e

        missing = {'misspelling', 'canonical'} - set(frame.columns)
        if missing:
            raise DictionaryError(f"Dictionary {path} is missing columns: {sorted(missing)}")

        frame = frame.dropna(subset=['misspelling', 'canonical'])
        dictionary = cls(zip(frame['misspelling'], frame['canonical']))
        logger.info(f"✅ Loaded {len(dictionary)} corrections ({len(dictionary.terms)} terms) from {path}")
        return dictionary

    def normalized(self, transform) -> 'CorrectionDictionary':
        """
        Copy whose misspellings are rewritten by `transform`, so they still
        match text that went through the same rewrite
        """
        entries = {}
        for wrong, canonical in self._entries.items():
            key = transform(wrong).lower()
            if entries.setdefault(key, canonical) != canonical:
                raise DictionaryError(
                    f"'{wrong}' normalizes to '{key}', already mapped to '{entries[key]}'"
                )
        return CorrectionDictionary(entries)

    def substitute(self, text: str) -> str:
        """Replace whole-word, case-insensitive matches with canonical terms"""
        if self._pattern is None:
            return text
        return self._pattern.sub(lambda m: self._entries[m.group(0).lower()], text)

    def __getitem__(self, key):
        return self._entries[key.lower()]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)


@lru_cache(maxsize=None)
def load_default_dictionary(path=DICTIONARY_PATH) -> CorrectionDictionary:
    """Process-wide dictionary, loaded once per path"""
    return CorrectionDictionary.from_csv(path)


class DomainCorrector:
    """
    Two-layer domain correction
    Layer 1: glyph substitutions and exact dictionary replacement
    Layer 2: fuzzy match of single words against canonical terms
    """

    def __init__(self, dictionary=None, glyph_substitutions=True, max_edit_ratio=FUZZY_MAX_EDIT_RATIO):
        self.dictionary = dictionary if dictionary is not None else load_default_dictionary()
        self.glyph_substitutions = glyph_substitutions
        self.max_edit_ratio = max_edit_ratio
        # Misspellings rewritten the same way the text is, so glyph fixes never hide a key
        self._lookup = self.dictionary.normalized(fix_glyphs) if glyph_substitutions else self.dictionary

    def correct(self, text: str) -> str:
        """
        Lower-case, substitute, then restore sentence-initial capitals

        Args:
            text: Recognized text

        Returns:
            Corrected text
        """
        if not text:
            return text

        corrected = lower_keeping_pronoun(text)
        if self.glyph_substitutions:
            corrected = fix_glyphs(corrected)
        corrected = self._lookup.substitute(corrected)
        return capitalize_sentences(corrected)

    def find_best_match(self, word: str) -> Optional[str]:
        """
        Closest canonical term within ceil(30%) of the word's length

        Returns:
            The canonical term, or None when nothing is close enough
        """
        normalized = word.lower()
        if not normalized:
            return None

        result = process.extractOne(
            normalized,
            self.dictionary.terms,
            scorer=Levenshtein.distance,
            score_cutoff=max_edit_distance(word, self.max_edit_ratio),
        )
        if result is None:
            return None
        return result[0]

    def correct_word(self, token: str) -> str:
        """
        Fuzzy-correct a single whitespace-delimited token,
        keeping surrounding punctuation and simple casing
        """
        prefix, core, suffix = TOKEN_PARTS.match(token).groups()
        if not any(c.isalpha() for c in core):
            return token

        match = self.find_best_match(core)
        if match is None or match == core.lower():
            return token

        logger.debug(f"Fuzzy corrected '{core}' → '{match}'")
        if core.isupper() and len(core) > 1:
            match = match.upper()
        elif core[0].isupper():
            match = match.capitalize()
        return prefix + match + suffix

    def suggest(self, word: str, top_n=3) -> List[Tuple[str, int]]:
        """
        Top N canonical terms for a (possibly misspelled) word

        Returns:
            List of (term, edit_distance) tuples, closest first
        """
        if not word or not self.dictionary.terms:
            return []

        matches = process.extract(
            word.lower(),
            self.dictionary.terms,
            scorer=Levenshtein.distance,
            limit=top_n,
        )
        return [(term, int(distance)) for term, distance, _ in matches]


# Standalone functions
def correct_clinical_text(text: str, dictionary=None) -> str:
    """Quick function to apply domain correction to recognized text"""
    return DomainCorrector(dictionary).correct(text)


def suggest_term_corrections(word: str, top_n=5, dictionary=None):
    """Quick function to get canonical term suggestions for a word"""
    return DomainCorrector(dictionary).suggest(word, top_n)
