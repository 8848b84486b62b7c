"""
FastAPI Backend for BaziGPT

Serves daily and personal forecasts (cached per day), on-demand readings,
the daily share card and the famous-person directory.
"""
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from bazi_utils import FALLBACK_PILLAR, draw_share_card_svg
from config import Settings, configure_logging, get_settings
from db_utils import FamousPeopleRepository
from errors import ConfigurationError, GenerationError, StoreError, StoreNotConfigured, UnsafeInputError
from logic import (
    FALLBACK_DAILY_FORECAST,
    FALLBACK_NOTICE,
    FALLBACK_PERSONAL_FORECAST,
    THROTTLED_NOTICE,
    ReadingService,
    prompt_birth_time,
)
from text_utils import COMPATIBILITY, DAILY, PERSONAL, SOLO

# --- Pydantic Models for Request/Response ---

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DailyForecastResponse(CamelModel):
    """Response for /api/daily-bazi."""
    date: str = Field(..., description="Forecast date (YYYY-MM-DD)")
    bazi_pillar: str = Field(..., alias="baziPillar", description="Day pillar, translated")
    forecast: str
    shareable_summary: str = Field(..., alias="shareableSummary")
    cached: bool = False
    fallback: bool = False
    error: Optional[str] = None


class PersonalForecastRequest(CamelModel):
    """Request for /api/daily-personal-forecast."""
    birth_date: date = Field(..., alias="birthDate", description="Birth date (YYYY-MM-DD)")
    birth_time: Optional[str] = Field(None, alias="birthTime", description="Birth time (HH:MM, optionally AM/PM); noon when omitted")
    language: str = Field("en", description="en, th or zh")

    @field_validator("birth_time")
    @classmethod
    def normalize_birth_time(cls, value: Optional[str]) -> Optional[str]:
        return prompt_birth_time(value)


class PersonalForecastResponse(CamelModel):
    today_pillar: str = Field(..., alias="todayPillar")
    personal_forecast: str = Field(..., alias="personalForecast")
    shareable_summary: str = Field(..., alias="shareableSummary")
    cached: bool = False
    fallback: bool = False
    error: Optional[str] = None


class ReadingRequest(CamelModel):
    """Request for /api/bazi-reading."""
    birth_date: date = Field(..., alias="birthDate")
    birth_time: Optional[str] = Field(None, alias="birthTime")

    @field_validator("birth_time")
    @classmethod
    def normalize_birth_time(cls, value: Optional[str]) -> Optional[str]:
        return prompt_birth_time(value)


class ReadingResponse(CamelModel):
    year_pillar: str = Field(..., alias="yearPillar")
    month_pillar: str = Field(..., alias="monthPillar")
    day_pillar: str = Field(..., alias="dayPillar")
    hour_pillar: str = Field(..., alias="hourPillar")
    reading: str
    shareable_summary: str = Field(..., alias="shareableSummary")


class CompatibilityRequest(CamelModel):
    """Request for /api/bazi-compatibility."""
    person1_birth_date: date = Field(..., alias="person1BirthDate")
    person1_birth_time: Optional[str] = Field(None, alias="person1BirthTime")
    person2_birth_date: date = Field(..., alias="person2BirthDate")
    person2_birth_time: Optional[str] = Field(None, alias="person2BirthTime")

    @field_validator("person1_birth_time", "person2_birth_time")
    @classmethod
    def normalize_birth_times(cls, value: Optional[str]) -> Optional[str]:
        return prompt_birth_time(value)


class CompatibilityResponse(CamelModel):
    reading: str
    shareable_summary: str = Field(..., alias="shareableSummary")


class FollowUpRequest(CamelModel):
    """Request for /api/bazi-followup."""
    birth_date: date = Field(..., alias="birthDate")
    question: str = Field(..., min_length=1, max_length=500)


class FollowUpResponse(BaseModel):
    content: str


class FamousListResponse(BaseModel):
    data: List[dict]
    total: int
    limit: int
    offset: int


class CategoriesResponse(BaseModel):
    categories: List[str]


# --- Helper Functions ---

def get_service(request: Request) -> ReadingService:
    return request.app.state.readings


def get_famous_repository(request: Request) -> FamousPeopleRepository:
    repository = request.app.state.famous
    if repository is None:
        repository = FamousPeopleRepository.from_settings(request.app.state.settings)
        request.app.state.famous = repository
    return repository


NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "CDN-Cache-Control": "no-store",
    "Vercel-CDN-Cache-Control": "no-store",
}


def cdn_cache_headers(seconds: int, tag: str) -> dict:
    """Let the CDN keep the daily payload until the next bucket starts."""
    return {
        "Cache-Control": f"public, max-age=0, s-maxage={seconds}, stale-while-revalidate=300",
        "CDN-Cache-Control": f"max-age={seconds}, stale-while-revalidate=300",
        "Vercel-CDN-Cache-Control": f"max-age={seconds}, stale-while-revalidate=300",
        "Vercel-Cache-Tag": tag,
    }


def forecast_headers(seconds: int, tag: str, fallback: bool) -> dict:
    """CDN headers for a forecast; a fallback must never be kept at the edge."""
    if fallback:
        return NO_STORE_HEADERS
    return cdn_cache_headers(seconds, tag)


def error_payload(error: Exception) -> str:
    if isinstance(error, ConfigurationError):
        return str(error)
    return FALLBACK_NOTICE


# --- App Initialization ---

def create_app(
    settings: Optional[Settings] = None,
    service: Optional[ReadingService] = None,
    famous: Optional[FamousPeopleRepository] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="BaziGPT API",
        description="Bazi readings, daily forecasts and the famous-person directory",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.readings = service or ReadingService.from_settings(settings)
    app.state.famous = famous
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "message": "BaziGPT API is running"}

    @app.get("/api/daily-bazi", response_model=DailyForecastResponse)
    async def daily_bazi(
        request: Request,
        response: Response,
        lang: str = Query("en", description="en, th or zh"),
        test_date: Optional[date] = Query(None, alias="date", description="Forecast another date"),
        force: bool = Query(False, description="Bypass the cached forecast"),
        invalidate: bool = Query(False, description="Drop the cached forecast first (development only)"),
    ):
        """
        Daily forecast for everyone, generated once per day and language.
        """
        service = get_service(request)
        day = test_date or service.today()
        if invalidate and request.app.state.settings.environment == "development":
            service.invalidate_daily(lang, day)

        try:
            forecast = await service.daily_forecast(lang, for_date=day, force=force)
        except (ConfigurationError, GenerationError) as e:
            return JSONResponse(
                status_code=500,
                content={
                    "date": day.isoformat(),
                    "baziPillar": FALLBACK_PILLAR,
                    "forecast": FALLBACK_DAILY_FORECAST,
                    "shareableSummary": DAILY.default_summary,
                    "cached": False,
                    "fallback": True,
                    "error": error_payload(e),
                },
                headers=NO_STORE_HEADERS,
            )

        response.headers.update(forecast_headers(
            service.daily_cache.seconds_until_next_bucket(),
            f"daily-bazi-{lang}-{day.isoformat()}",
            forecast.fallback,
        ))
        return DailyForecastResponse(
            date=forecast.date,
            bazi_pillar=forecast.bazi_pillar,
            forecast=forecast.forecast,
            shareable_summary=forecast.shareable_summary,
            cached=forecast.cached,
            fallback=forecast.fallback,
            error=THROTTLED_NOTICE if forecast.fallback else None,
        )

    @app.get("/api/daily-bazi-status")
    async def daily_bazi_status(request: Request):
        """Liveness plus cache statistics for both forecast producers."""
        service = get_service(request)
        return {
            "date": service.today().isoformat(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": request.app.state.settings.environment,
            "message": "Daily Bazi Forecast API is running",
            "cache": service.status(),
        }

    @app.post("/api/daily-personal-forecast", response_model=PersonalForecastResponse)
    async def daily_personal_forecast(
        request: Request,
        body: PersonalForecastRequest,
        force: bool = Query(False),
    ):
        """Personal forecast comparing today's pillar with a birthday, cached per day."""
        service = get_service(request)
        try:
            forecast = await service.personal_forecast(
                body.birth_date, body.birth_time, body.language, force=force
            )
        except (ConfigurationError, GenerationError) as e:
            return JSONResponse(
                status_code=500,
                content={
                    "todayPillar": FALLBACK_PILLAR,
                    "personalForecast": FALLBACK_PERSONAL_FORECAST,
                    "shareableSummary": PERSONAL.default_summary,
                    "cached": False,
                    "fallback": True,
                    "error": error_payload(e),
                },
            )

        return PersonalForecastResponse(
            today_pillar=forecast.today_pillar,
            personal_forecast=forecast.personal_forecast,
            shareable_summary=forecast.shareable_summary,
            cached=forecast.cached,
            fallback=forecast.fallback,
            error=THROTTLED_NOTICE if forecast.fallback else None,
        )

    @app.post("/api/bazi-reading", response_model=ReadingResponse)
    async def bazi_reading(request: Request, body: ReadingRequest):
        """Full reading for one birth date."""
        try:
            reading = await get_service(request).solo_reading(body.birth_date, body.birth_time)
        except (ConfigurationError, GenerationError) as e:
            return JSONResponse(
                status_code=500,
                content={"error": str(e), "shareableSummary": SOLO.default_summary},
            )
        return ReadingResponse(**reading.__dict__)

    @app.post("/api/bazi-compatibility", response_model=CompatibilityResponse)
    async def bazi_compatibility(request: Request, body: CompatibilityRequest):
        """Relationship compatibility between two birth dates."""
        try:
            reading = await get_service(request).compatibility_reading(
                body.person1_birth_date,
                body.person1_birth_time,
                body.person2_birth_date,
                body.person2_birth_time,
            )
        except (ConfigurationError, GenerationError) as e:
            return JSONResponse(
                status_code=500,
                content={"error": str(e), "shareableSummary": COMPATIBILITY.default_summary},
            )
        return CompatibilityResponse(reading=reading.reading, shareable_summary=reading.shareable_summary)

    @app.post("/api/bazi-followup", response_model=FollowUpResponse)
    async def bazi_followup(request: Request, body: FollowUpRequest):
        """Short bullet-point answer about one aspect of a reading."""
        try:
            content = await get_service(request).followup_answer(body.birth_date, body.question)
        except UnsafeInputError:
            raise HTTPException(status_code=400, detail="Invalid input detected")
        except (ConfigurationError, GenerationError) as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        return FollowUpResponse(content=content)

    @app.get("/api/daily-share-card")
    async def daily_share_card(
        request: Request,
        lang: str = Query("en"),
        orientation: str = Query("landscape", pattern="^(landscape|portrait)$"),
    ):
        """SVG card of today's forecast for social sharing."""
        service = get_service(request)
        try:
            forecast = await service.daily_forecast(lang)
            day, pillar = date.fromisoformat(forecast.date), forecast.bazi_pillar
            body, summary = forecast.forecast, forecast.shareable_summary
            is_fallback = forecast.fallback
        except (ConfigurationError, GenerationError):
            day, pillar = service.today(), FALLBACK_PILLAR
            body, summary = FALLBACK_DAILY_FORECAST, DAILY.default_summary
            is_fallback = True

        svg = draw_share_card_svg(day, pillar, body, summary, portrait=orientation == "portrait")
        headers = forecast_headers(
            service.daily_cache.seconds_until_next_bucket(),
            f"daily-share-card-{lang}-{day.isoformat()}",
            is_fallback,
        )
        return Response(content=svg, media_type="image/svg+xml", headers=headers)

    @app.get("/api/famous", response_model=FamousListResponse)
    def famous_list(
        request: Request,
        search: str = Query(""),
        category: str = Query(""),
        limit: Optional[int] = Query(None, ge=1),
        offset: int = Query(0, ge=0),
    ):
        """Page through the famous-person directory."""
        try:
            return get_famous_repository(request).list_people(search, category, limit, offset)
        except StoreNotConfigured:
            raise HTTPException(status_code=503, detail="Famous-person store is not configured")
        except StoreError:
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/api/famous/categories", response_model=CategoriesResponse)
    def famous_categories(request: Request):
        """Distinct categories present in the directory."""
        try:
            return {"categories": get_famous_repository(request).list_categories()}
        except StoreNotConfigured:
            raise HTTPException(status_code=503, detail="Famous-person store is not configured")
        except StoreError:
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/api/famous/{slug}")
    def famous_person(request: Request, slug: str):
        """One pre-computed famous-person reading."""
        try:
            person = get_famous_repository(request).get_by_slug(slug)
        except StoreNotConfigured:
            raise HTTPException(status_code=503, detail="Famous-person store is not configured")
        except StoreError:
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        if person is None:
            raise HTTPException(status_code=404, detail="Not found")
        return person


app = create_app()


# --- Run with: uvicorn main:app --reload ---
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
