# FastAPI server for the phrase verification form.
# Provides:
# - POST /api/session: open a form session (returns id + token + state)
# - GET  /api/session/{sid}/state?token=...: current form state
# - POST /api/session/{sid}/word: type into one of the 12 word slots
# - POST /api/session/{sid}/username: username input / blur check
# - POST /api/session/{sid}/submit: validate and submit the phrase
# - POST /api/session/{sid}/theme: toggle dark mode
# - GET  /api/leaderboard: current leaderboard view
# - POST /api/leaderboard/retry: retry store initialization
# - GET  /api/health: store readiness
#
# Also serves the client static files on / (form page).
#
# Run: uvicorn phrasegate.main:app --host 0.0.0.0 --port 8000

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Callable, Optional
from fastapi import Cookie, FastAPI, HTTPException, Request, Response
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from .config import CORS_ORIGINS, INIT_ATTEMPTS, INIT_RETRY_DELAY, LEADERBOARD_INTERVAL
from .controller import THEME_KEY, FormController
from .leaderboard import LeaderboardRefresher
from .logger import setup_logger
from .models import (
    FormState, LeaderboardView, SessionResponse, SubmitResponse, TokenRequest, UsernameRequest,
    UsernameResponse, WordRequest, WordResponse,
)
from .readiness import StoreReadiness
from .sessions import SessionRegistry
from .store import Store, make_store

logger = setup_logger("phrasegate")

CLIENT_DIR = Path(__file__).parent / "client"


def create_app(store_factory: Callable[[], Store] = make_store, init_attempts: int = INIT_ATTEMPTS,
               init_retry_delay: float = INIT_RETRY_DELAY, leaderboard_interval: float = LEADERBOARD_INTERVAL,
               **registry_options) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = store_factory()
        readiness = StoreReadiness(store, attempts=init_attempts, retry_delay=init_retry_delay)
        refresher = LeaderboardRefresher(store, readiness, interval=leaderboard_interval)
        app.state.store = store
        app.state.readiness = readiness
        app.state.refresher = refresher
        app.state.sessions = SessionRegistry(store, refresher, **registry_options)
        refresher.start()
        await readiness.initialize()
        yield
        await app.state.sessions.close()
        await refresher.stop()
        store.close()

    app = FastAPI(title="Phrase Gate", version="1.0.0", lifespan=lifespan)

    # CORS for dev convenience
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    app.mount("/static", StaticFiles(directory=str(CLIENT_DIR)), name="static")

    def registry(request: Request) -> SessionRegistry:
        return request.app.state.sessions

    def controller_for(request: Request, session_id: str, token: str) -> FormController:
        try:
            return registry(request).get(session_id, token)
        except PermissionError as e:
            raise HTTPException(status_code=401, detail=str(e))
        except LookupError as e:
            raise HTTPException(status_code=404, detail=str(e))

    def set_theme_cookie(request: Request, response: Response, controller: FormController) -> None:
        response.set_cookie(
            THEME_KEY,
            registry(request).theme_cookie(controller.prefs),
            max_age=60 * 60 * 24 * 365,
            samesite="lax",
        )

    @app.get("/", response_class=HTMLResponse)
    def index():
        p = CLIENT_DIR / "index.html"
        return HTMLResponse(p.read_text(encoding="utf-8"))

    @app.get("/api/health")
    async def api_health(request: Request):
        readiness: StoreReadiness = request.app.state.readiness
        return {"ok": True, "store_ready": readiness.ready}

    @app.get("/api/leaderboard", response_model=LeaderboardView)
    async def api_leaderboard(request: Request):
        return request.app.state.refresher.view

    @app.post("/api/leaderboard/retry", response_model=LeaderboardView)
    async def api_leaderboard_retry(request: Request):
        refresher: LeaderboardRefresher = request.app.state.refresher
        await refresher.retry_initialization()
        return refresher.view

    @app.post("/api/session", response_model=SessionResponse)
    async def api_session(request: Request, response: Response, darkMode: Optional[str] = Cookie(None)):
        sid, token, controller = registry(request).create(darkMode)
        set_theme_cookie(request, response, controller)
        return SessionResponse(session_id=sid, token=token, state=controller.state())

    @app.get("/api/session/{session_id}/state", response_model=FormState)
    async def api_state(request: Request, session_id: str, token: str):
        return controller_for(request, session_id, token).state()

    @app.post("/api/session/{session_id}/word", response_model=WordResponse)
    async def api_word(request: Request, session_id: str, req: WordRequest):
        controller = controller_for(request, session_id, req.token)
        return WordResponse(index=req.index, state=controller.set_word(req.index, req.value))

    @app.post("/api/session/{session_id}/username", response_model=UsernameResponse)
    async def api_username(request: Request, session_id: str, req: UsernameRequest, blur: bool = True):
        controller = controller_for(request, session_id, req.token)
        if blur:
            state = controller.blur_username(req.value)
        else:
            controller.set_username(req.value)
            state = controller.state().username_state
        return UsernameResponse(state=state, error=controller.username_error)

    @app.post("/api/session/{session_id}/submit", response_model=SubmitResponse)
    async def api_submit(request: Request, session_id: str, req: TokenRequest):
        controller = controller_for(request, session_id, req.token)
        # The write policy counts per client address; session ids are free to mint.
        client_ip = request.client.host if request.client else None
        result = await controller.submit(client_ip)
        if result.busy:
            raise HTTPException(status_code=409, detail="Submission already in progress")
        return SubmitResponse(accepted=result.accepted, error_count=result.error_count, state=controller.state())

    @app.post("/api/session/{session_id}/theme", response_model=FormState)
    async def api_theme(request: Request, response: Response, session_id: str, req: TokenRequest):
        controller = controller_for(request, session_id, req.token)
        controller.toggle_theme()
        set_theme_cookie(request, response, controller)
        return controller.state()

    return app


app = create_app()
