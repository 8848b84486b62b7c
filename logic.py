"""
BaziGPT reading services.

Ties prompt templates, the completion endpoint, summary extraction and the
day-bucketed caches together. One ``ReadingService`` owns one cache per
cached producer (daily forecast, personal forecast); it is built once at
startup and shared by the request handlers.
"""
from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, Optional

from bazi_utils import FALLBACK_PILLAR, PillarStrategy, get_pillar_strategy
from config import Settings
from errors import UnsafeInputError
from forecast_cache import (
    CacheStore,
    JsonFileCacheStore,
    SingleFlightCache,
    make_cache_key,
    resolve_timezone,
    utc_now,
)
from llm_client import generate_text
from prompts import (
    COMPATIBILITY_MAX_TOKENS,
    DAILY_MAX_TOKENS,
    FOLLOWUP_MAX_TOKENS,
    NOON,
    PERSONAL_MAX_TOKENS,
    PILLAR_PREFIX_PATTERNS,
    SOLO_MAX_TOKENS,
    build_compatibility_messages,
    build_daily_messages,
    build_followup_messages,
    build_personal_messages,
    build_solo_messages,
    is_safe_input,
    normalize_birth_time,
    normalize_language,
)
from text_utils import (
    COMPATIBILITY,
    DAILY,
    PERSONAL,
    SOLO,
    Envelope,
    extract_envelope,
    extract_pillars,
    split_headline,
    strip_markdown,
)

logger = logging.getLogger(__name__)

TextGenerator = Callable[..., Awaitable[str]]

FALLBACK_DAILY_FORECAST = (
    "Today brings the energy of Yang Fire over Monkey. This combination suggests a day of "
    "dynamic activity and clever problem-solving. The Fire element provides warmth and "
    "enthusiasm, while the Monkey brings wit and adaptability. Focus on creative projects and "
    "social interactions today. Avoid rushing into decisions without careful consideration."
)

FALLBACK_PERSONAL_FORECAST = (
    "• Be mindful of your energy levels today - the Fire element may make you feel more active than usual\n"
    "• Focus on creative projects and social interactions\n"
    "• Avoid rushing into decisions without careful consideration"
)

FALLBACK_NOTICE = "Generated fallback forecast due to API error"
THROTTLED_NOTICE = "Fallback forecast served; a fresh reading is not available yet"


@dataclass
class DailyForecast:
    date: str
    bazi_pillar: str
    forecast: str
    shareable_summary: str
    cached: bool = False
    fallback: bool = False


@dataclass
class PersonalForecast:
    today_pillar: str
    personal_forecast: str
    shareable_summary: str
    cached: bool = False
    fallback: bool = False


@dataclass
class SoloReading:
    year_pillar: str
    month_pillar: str
    day_pillar: str
    hour_pillar: str
    reading: str
    shareable_summary: str


@dataclass
class CompatibilityReading:
    reading: str
    shareable_summary: str


def extract_daily(raw: str) -> Envelope:
    """First line is the translated pillar, the rest the forecast."""
    pillar, body = split_headline(raw, PILLAR_PREFIX_PATTERNS)
    envelope = extract_envelope(body, DAILY)
    envelope.metadata["pillar"] = pillar
    return envelope


def extract_personal(raw: str) -> Envelope:
    return extract_envelope(strip_markdown(raw), PERSONAL)


def prompt_birth_time(birth_time: Optional[str]) -> Optional[str]:
    """Normalised ``HH:MM``, or None when the time is unknown and noon is assumed."""
    normalized = normalize_birth_time(birth_time)
    return None if normalized == NOON else normalized


def daily_fallback() -> Envelope:
    return Envelope(
        primary_content=FALLBACK_DAILY_FORECAST,
        shareable_summary=DAILY.default_summary,
        metadata={"pillar": FALLBACK_PILLAR, "fallback": True},
    )


def personal_fallback() -> Envelope:
    return Envelope(
        primary_content=FALLBACK_PERSONAL_FORECAST,
        shareable_summary=PERSONAL.default_summary,
        metadata={"fallback": True},
    )


class ReadingService:
    """Entry point for every reading type served over HTTP."""

    def __init__(
        self,
        settings: Settings,
        daily_cache: SingleFlightCache,
        personal_cache: SingleFlightCache,
        pillar_strategy: PillarStrategy,
        generator: TextGenerator,
    ):
        self.settings = settings
        self.daily_cache = daily_cache
        self.personal_cache = personal_cache
        self.pillar_strategy = pillar_strategy
        self._generate = generator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        generator: Optional[TextGenerator] = None,
        daily_store: Optional[CacheStore] = None,
        personal_store: Optional[CacheStore] = None,
        pillar_strategy: Optional[PillarStrategy] = None,
        clock=utc_now,
        timer=time.monotonic,
    ) -> "ReadingService":
        tz = resolve_timezone(settings.bucket_timezone)
        common = {
            "wait_timeout": settings.peer_wait_timeout_seconds,
            "retention_buckets": settings.cache_retention_buckets,
            "tz": tz,
            "clock": clock,
            "timer": timer,
        }
        daily_cache = SingleFlightCache(
            "daily",
            daily_store or JsonFileCacheStore(settings.cache_dir / "daily-bazi-cache.json"),
            extract_daily,
            daily_fallback,
            min_interval=settings.daily_min_interval_seconds,
            **common,
        )
        personal_cache = SingleFlightCache(
            "personal",
            personal_store or JsonFileCacheStore(settings.cache_dir / "personal-forecast-cache.json"),
            extract_personal,
            personal_fallback,
            min_interval=settings.personal_min_interval_seconds,
            **common,
        )
        return cls(
            settings=settings,
            daily_cache=daily_cache,
            personal_cache=personal_cache,
            pillar_strategy=pillar_strategy or get_pillar_strategy(settings.pillar_strategy),
            generator=generator or functools.partial(generate_text, settings=settings),
        )

    def today(self) -> date:
        return date.fromisoformat(self.daily_cache.current_bucket())

    def pillar_for(self, day: date) -> str:
        try:
            return self.pillar_strategy.pillar_for(day)
        except Exception:
            logger.exception("Pillar strategy failed for %s", day)
            return FALLBACK_PILLAR

    # --- cached producers ---

    async def daily_forecast(
        self, language: str = "en", for_date: Optional[date] = None, force: bool = False
    ) -> DailyForecast:
        language = normalize_language(language)
        day = for_date or self.today()
        key = make_cache_key("daily", day.isoformat(), language)
        pillar = self.pillar_for(day)

        async def generate() -> str:
            return await self._generate(build_daily_messages(pillar, language), DAILY_MAX_TOKENS)

        result = await self.daily_cache.fetch(key, generate, force=force)
        envelope = result.envelope
        return DailyForecast(
            date=day.isoformat(),
            bazi_pillar=envelope.metadata.get("pillar") or pillar,
            forecast=envelope.primary_content,
            shareable_summary=envelope.shareable_summary,
            cached=result.cached,
            fallback=bool(envelope.metadata.get("fallback")),
        )

    def invalidate_daily(self, language: str = "en", for_date: Optional[date] = None) -> bool:
        day = for_date or self.today()
        return self.daily_cache.invalidate(make_cache_key("daily", day.isoformat(), normalize_language(language)))

    async def personal_forecast(
        self,
        birth_date: date,
        birth_time: Optional[str] = None,
        language: str = "en",
        force: bool = False,
    ) -> PersonalForecast:
        language = normalize_language(language)
        birth_time = prompt_birth_time(birth_time)
        today = self.today()
        key = make_cache_key(
            "personal", today.isoformat(), birth_date.isoformat(), birth_time or NOON, language
        )
        today_pillar = self.pillar_for(today)

        async def generate() -> str:
            messages = build_personal_messages(today_pillar, birth_date, birth_time, language)
            return await self._generate(messages, PERSONAL_MAX_TOKENS)

        result = await self.personal_cache.fetch(key, generate, force=force)
        envelope = result.envelope
        is_fallback = bool(envelope.metadata.get("fallback"))
        return PersonalForecast(
            today_pillar=FALLBACK_PILLAR if is_fallback else today_pillar,
            personal_forecast=envelope.primary_content,
            shareable_summary=envelope.shareable_summary,
            cached=result.cached,
            fallback=is_fallback,
        )

    # --- uncached readings ---

    async def solo_reading(self, birth_date: date, birth_time: Optional[str] = None) -> SoloReading:
        messages = build_solo_messages(birth_date, prompt_birth_time(birth_time))
        raw = await self._generate(messages, SOLO_MAX_TOKENS)
        envelope = extract_envelope(raw, SOLO)
        pillars = extract_pillars(envelope.primary_content)
        return SoloReading(
            reading=envelope.primary_content,
            shareable_summary=envelope.shareable_summary,
            **pillars,
        )

    async def compatibility_reading(
        self,
        person1_birth_date: date,
        person1_birth_time: Optional[str],
        person2_birth_date: date,
        person2_birth_time: Optional[str],
    ) -> CompatibilityReading:
        messages = build_compatibility_messages(
            person1_birth_date,
            prompt_birth_time(person1_birth_time),
            person2_birth_date,
            prompt_birth_time(person2_birth_time),
        )
        raw = await self._generate(messages, COMPATIBILITY_MAX_TOKENS)
        envelope = extract_envelope(raw, COMPATIBILITY)
        return CompatibilityReading(
            reading=envelope.primary_content,
            shareable_summary=envelope.shareable_summary,
        )

    async def followup_answer(self, birth_date: date, question: str) -> str:
        if not is_safe_input(question):
            raise UnsafeInputError("Question rejected by input filter")
        return await self._generate(
            build_followup_messages(birth_date, question),
            FOLLOWUP_MAX_TOKENS,
            model=self.settings.followup_model,
        )

    def status(self) -> Dict[str, object]:
        return {
            "daily": self.daily_cache.stats(),
            "personal": self.personal_cache.stats(),
        }
