# stockledger/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stockledger.middleware import RequestIdMiddleware
from stockledger.db import Base, engine
from stockledger.config import settings
from stockledger.routers import products, customers, transactions, inventory, reports

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Stockledger API", version="0.1.0")

@app.on_event("startup")
def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info("stockledger started (env=%s, tz=%s)", settings.APP_ENV, settings.TZ)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(products.router)
app.include_router(customers.router)
app.include_router(transactions.router)
app.include_router(inventory.router)
app.include_router(reports.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
