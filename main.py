# main.py (lifespan-based)
from __future__ import annotations

import asyncio, logging, contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from tortoise import Tortoise, connections

from errors import BillingError
from routers import auth, users, members, settings, readings, bills, payments, analytics, public
from scheduler import Scheduler
from services import config
from services.bills import sweep_overdue
from services.seeder import seed_if_empty

logger = logging.getLogger("uvicorn")

TORTOISE_MODULES = {"models": ["models"]}


async def _job_overdue_sweep():
    n = await sweep_overdue()
    if n:
        logger.info(f"[sweep] {n} bills moved to overdue")


async def init_db(db_url: str = config.DB_URL) -> None:
    await Tortoise.init(db_url=db_url, modules=TORTOISE_MODULES)
    await Tortoise.generate_schemas(safe=True)


# ----- lifespan -----
@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await seed_if_empty(logger=logger.info)

    sched_task = None
    if config.OVERDUE_SWEEP_SECONDS > 0:
        sched = Scheduler()
        sched.every(config.OVERDUE_SWEEP_SECONDS, _job_overdue_sweep)
        app.state.scheduler = sched
        sched_task = asyncio.create_task(sched.run_forever())
    try:
        yield
    finally:
        if sched_task and not sched_task.done():
            sched_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sched_task
        await connections.close_all()


# ----- app & routers -----
app = FastAPI(lifespan=lifespan, title="Water Cooperative Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "X-Total-Count"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth.router)
app.include_router(users.router)

app.include_router(members.router)
app.include_router(settings.router)
app.include_router(readings.router)
app.include_router(bills.router)
app.include_router(payments.router)
app.include_router(analytics.router)
app.include_router(public.router)

for route in app.routes:
    if isinstance(route, APIRoute):
        logger.info("%s -> %s", list(route.methods), route.path)
