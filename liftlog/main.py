import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .settings import get_settings
from .db import init_db
from .errors import WorkoutError
from .services.expiry import start_scheduler, stop_scheduler
from .services.stats import router as stats_router
from .services.workouts import router as workouts_router
from .services.exercises import router as exercises_router
from .services.sets import router as sets_router

app = FastAPI(title="liftlog")

# stats first: /workouts/stats must not be captured by /workouts/{workout_id}
app.include_router(stats_router)
app.include_router(workouts_router)
app.include_router(exercises_router)
app.include_router(sets_router)


@app.exception_handler(WorkoutError)
async def workout_error_handler(request: Request, exc: WorkoutError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.on_event("startup")
async def on_startup() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    await init_db()
    if settings.enable_expiry_sweep:
        start_scheduler()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    stop_scheduler()
