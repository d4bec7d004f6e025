from __future__ import annotations

import re
from typing import Iterable, List

from .entities import MoodContext, SongHint


_LANGUAGE_TERMS = {
    "english": "",
    "hindi": "hindi",
    "spanish": "spanish",
    "french": "french",
    "japanese": "japanese",
    "korean": "korean",
    "portuguese": "portuguese",
    "german": "german",
    "italian": "italian",
    "chinese": "chinese",
    "tamil": "tamil",
    "telugu": "telugu",
    "punjabi": "punjabi",
}

_MOOD_EMOJI = {
    "upbeat": "☀️", "cozy": "🌧️", "relaxed": "☁️", "balanced": "⛅",
    "calm": "❄️", "mysterious": "🌫️", "energetic": "💨", "intense": "⛈️",
    "tropical": "🌡️", "warm": "🧊", "focus": "🧠", "workout": "💪", "party": "🎉",
    "sleep": "😴", "commute": "🚗",
}
_DEFAULT_EMOJI = "🎶"

SUPPLEMENTAL_GENRES = 3
SUPPLEMENTAL_VARIANTS = ("song", "hit", "popular")

_MULTISPACE_PATTERN = re.compile(r"\s+")


def _squash(value: str) -> str:
    return _MULTISPACE_PATTERN.sub(" ", value or "").strip()


def language_term(language: str) -> str:
    """Search term for a language key. English and unknown keys add nothing."""
    return _LANGUAGE_TERMS.get((language or "").strip().lower(), "")


def hint_query(hint: SongHint, term: str = "") -> str:
    return _squash(f"{hint.artist} {hint.title} {term}")


def supplemental_queries(mood: str, genres: Iterable[str], term: str = "") -> List[str]:
    """Genre/mood fallback queries in priority order.

    Three phrasing variants per genre for the first three genres, followed by
    one mood-wide query.
    """
    prefix = f"{term} " if term else ""
    queries = []
    for genre in list(genres)[:SUPPLEMENTAL_GENRES]:
        for variant in SUPPLEMENTAL_VARIANTS:
            queries.append(_squash(f"{prefix}{genre} {mood} {variant}"))
    if term:
        queries.append(_squash(f"popular {term} {mood}"))
    else:
        queries.append(_squash(f"{mood} songs"))
    return queries


def mood_emoji(mood: str) -> str:
    return _MOOD_EMOJI.get((mood or "").lower(), _DEFAULT_EMOJI)


def playlist_name(condition: str, location: str, language_name: str) -> str:
    return f"WeatherTunes: {condition} in {location} ({language_name})"


def playlist_description(mood: MoodContext, language_name: str) -> str:
    return f"{mood_emoji(mood.type)} {mood.suggestion} | {language_name} playlist | Created by WeatherTunes"
