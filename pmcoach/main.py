# pmcoach/main.py

# ------------------------
# env
# ------------------------
from dotenv import load_dotenv
load_dotenv()

import logging

# ------------------------
# FastAPI, CORS middleware
# ------------------------
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pmcoach.config import settings
from pmcoach.db.base import init_db
from pmcoach.deps import question_store, registry
from pmcoach.exceptions import InterviewError
from pmcoach.services.seed import seed_questions

# ------------------------
# routers
# ------------------------
from pmcoach.routers import questions as questions_router
from pmcoach.routers import interview as interview_router
from pmcoach.routers import sessions as sessions_router
from pmcoach.routers import stats as stats_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ------------------------
# 1) app
# ------------------------
app = FastAPI(title="PM Interview Coach API")

# ------------------------
# 2) CORS
# ------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------
# 3) routers
# ------------------------
app.include_router(questions_router.router)
app.include_router(interview_router.router)
app.include_router(sessions_router.router)
app.include_router(stats_router.router)


# ------------------------
# 4) engine errors -> {"detail": {"message", "detail"}}
# ------------------------
@app.exception_handler(InterviewError)
async def interview_error_handler(request: Request, exc: InterviewError):
    if exc.status_code >= 500:
        logger.warning(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.code, "detail": exc.detail}},
    )


# ------------------------
# 5) lifecycle
# ------------------------
@app.on_event("startup")
def on_startup():
    logger.info("PM Interview Coach starting up...")
    init_db()
    if settings.seed_questions:
        seed_questions(question_store)


@app.on_event("shutdown")
def on_shutdown():
    # stop live countdowns; unfinished sessions stay completed=false
    registry.shutdown()
    logger.info("PM Interview Coach shut down")


# ------------------------
# 6) health check
# ------------------------
@app.get("/")
def root():
    return {"ok": True}
