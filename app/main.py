import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.db.database import engine, Base
from app.api import formulas, ingredients, notifications, users
from app.engine.errors import FormulaError
from app.services.scheduler import start_scheduler, shutdown_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="Formula Ledger API",
    description="Versioned supplement formulas with dosage safety checks",
    version="0.1.0",
    lifespan=lifespan
)


@app.exception_handler(FormulaError)
async def formula_error_handler(request: Request, exc: FormulaError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code}
    )


app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(formulas.router, prefix="/formulas", tags=["formulas"])
app.include_router(ingredients.router, prefix="/ingredients", tags=["ingredients"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])


@app.get("/")
async def root():
    return {"message": "Formula Ledger API", "docs": "/docs"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
