import datetime as dt
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .db import settings
from .errors import Busy, GameError
from .game import GameController, controller
from .logging_config import configure_logging
from .models import CompletionRecord, GuessOutcome, ScreenshotView, SessionSnapshot, StartResult, TodayChallenge
from .schemas import GuessIn, NavigateIn, PublishChallengeIn, PublishChallengeOut

configure_logging("thebox-api", settings.ENVIRONMENT, settings.LOG_LEVEL)

app = FastAPI(title="The Box API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_controller() -> GameController:
    return controller


def require_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Identity comes from the auth proxy in front of this service.
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def _http_error(exc: GameError) -> HTTPException:
    headers = {"Retry-After": "1"} if isinstance(exc, Busy) else None
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail(), headers=headers)


@app.get("/api/challenge/today", response_model=TodayChallenge)
async def today_challenge(
    date: Optional[dt.date] = None,
    x_user_id: Optional[str] = Header(default=None),
    game: GameController = Depends(get_controller),
):
    return await game.get_today_challenge(x_user_id, date)


@app.post("/api/challenge/{challenge_id}/start", response_model=StartResult)
async def start_challenge(
    challenge_id: str,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.start_challenge(challenge_id, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc


@app.get("/api/session/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.get_snapshot(session_id, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc


@app.get("/api/session/{session_id}/screenshot/{position}", response_model=ScreenshotView)
async def get_screenshot(
    session_id: str,
    position: int,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.get_screenshot(session_id, position, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc


@app.post("/api/session/{session_id}/guess", response_model=GuessOutcome)
async def submit_guess(
    session_id: str,
    payload: GuessIn,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.submit_guess(
            session_id,
            payload.screenshot_id,
            payload.position,
            payload.game_id,
            payload.guess_text,
            user_id,
            client_elapsed_ms=payload.round_time_taken_ms,
        )
    except GameError as exc:
        raise _http_error(exc) from exc


@app.post("/api/session/{session_id}/navigate", response_model=SessionSnapshot)
async def navigate(
    session_id: str,
    payload: NavigateIn,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.navigate(session_id, payload.position, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc


@app.post("/api/session/{session_id}/skip", response_model=SessionSnapshot)
async def skip(
    session_id: str,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.skip(session_id, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc


@app.post("/api/session/{session_id}/forfeit", response_model=CompletionRecord)
async def forfeit(
    session_id: str,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        return await game.forfeit(session_id, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc


@app.get("/api/session/{session_id}/events")
async def list_events(
    session_id: str,
    after: int | None = None,
    limit: int = 200,
    user_id: str = Depends(require_user),
    game: GameController = Depends(get_controller),
):
    try:
        await game.get_snapshot(session_id, user_id)
    except GameError as exc:
        raise _http_error(exc) from exc
    events = await game.events.list(session_id, after=after, limit=limit)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


@app.post("/api/admin/challenges", response_model=PublishChallengeOut)
async def publish_challenge(
    payload: PublishChallengeIn,
    _: None = Depends(require_admin),
    game: GameController = Depends(get_controller),
):
    try:
        challenge = await game.catalog.publish_challenge(
            payload.date,
            payload.screenshots,
            time_limit_seconds=payload.time_limit_seconds,
            bonus_multipliers=payload.bonus_multipliers,
            tier_name=payload.tier_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PublishChallengeOut(challenge_id=challenge.id, date=challenge.date)
