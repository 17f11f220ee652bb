# app.py — Crossword clue trainer API
# - Thin request layer over quiz.py; every route re-derives from the store
# - Store failures surface as 500 with a generic message, details go to the log

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import db
import quiz
from env_validation import get_cors_origins, validate_environment
from quiz import ClueNotFound, InvalidInput, NoEligibleClues, NoPuzzles, PuzzleNotFound, StoreFailure

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        db.init()
        logger.info("Clue store ready at %s", db.DB_PATH)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Crossword Clue Trainer", version="1.0.0", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(StoreFailure)
async def _store_failure_handler(request: Request, exc: StoreFailure):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Store unavailable"})


# ---------- Quiz ----------
@app.get("/api/quiz")
def next_clue(include_marked_complete: Optional[bool] = Query(default=None, alias="includeMarkedComplete")):
    try:
        return quiz.get_next_clue(include_marked_complete=include_marked_complete)
    except NoPuzzles as exc:
        raise HTTPException(status_code=404, detail="No puzzles found") from exc
    except NoEligibleClues as exc:
        raise HTTPException(status_code=404, detail="No completed clues found") from exc


@app.post("/api/quiz-attempt")
def post_attempt(payload: Any = Body(default=None)):
    try:
        body = quiz.parse_attempt(payload)
        stats = quiz.record_attempt(body.clue_id, body.puzzle_date, body.correct)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "stats": stats.to_payload()}


@app.get("/api/quiz-attempt")
def attempt_stats(
    clue_id: Optional[str] = Query(default=None, alias="clueId"),
    puzzle_date: Optional[str] = Query(default=None, alias="puzzleDate"),
):
    try:
        stats = quiz.get_clue_stats(clue_id, puzzle_date)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"stats": stats.to_payload()}


# ---------- Analytics ----------
@app.get("/api/performance")
def performance():
    clues = quiz.get_performance_report()
    return {"clues": clues, "total": len(clues)}


@app.get("/api/puzzle-stats")
def puzzle_stats():
    return {"puzzles": quiz.get_puzzle_stats()}


@app.get("/api/incomplete")
def incomplete():
    clues = quiz.list_incomplete_clues()
    return {"clues": clues, "total": len(clues)}


# ---------- Puzzles & clues ----------
@app.post("/api/clues")
def save_clues(payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        record = quiz.save_puzzle(payload)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "puzzleDate": record.puzzle_date}


@app.get("/api/clues")
def get_clues(date: Optional[str] = None):
    if not date:
        return quiz.list_puzzles()
    try:
        return quiz.get_puzzle_detail(date)
    except PuzzleNotFound as exc:
        raise HTTPException(status_code=404, detail="Puzzle not found") from exc


@app.patch("/api/clue/{clue_id}")
def patch_clue(clue_id: str, payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        clue = quiz.update_clue(clue_id, payload)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PuzzleNotFound as exc:
        raise HTTPException(status_code=404, detail="Puzzle not found") from exc
    except ClueNotFound as exc:
        raise HTTPException(status_code=404, detail="Clue not found") from exc
    return {"success": True, "clue": clue.to_payload()}


@app.delete("/api/clue/{clue_id}")
def remove_clue(clue_id: str, puzzle_date: Optional[str] = Query(default=None, alias="puzzleDate")):
    try:
        quiz.delete_clue(clue_id, puzzle_date)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PuzzleNotFound as exc:
        raise HTTPException(status_code=404, detail="Puzzle not found") from exc
    return {"success": True}


@app.patch("/api/puzzle/{puzzle_date}")
def patch_puzzle(puzzle_date: str, payload: Dict[str, Any] = Body(default_factory=dict)):
    try:
        marked = quiz.set_marked_complete(puzzle_date, payload)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PuzzleNotFound as exc:
        raise HTTPException(status_code=404, detail="Puzzle not found") from exc
    return {"success": True, "markedComplete": marked}
