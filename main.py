import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from config import CORS_ORIGINS, LOG_LEVEL, PORT
from database import DatabaseUnavailable, ensure_indexes

import auth
import messaging
import orders
import products
import profiles
import storage
import wishlist

logger = logging.getLogger("marketplace")


def setup_logging():
    """Configures the root logger once; later calls are no-ops."""
    logging.basicConfig(
        level=LOG_LEVEL,
        stream=sys.stdout,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if database.db is not None:
        ensure_indexes()
        products.seed_categories()
        logger.info("Marketplace backend started")
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="Campus Marketplace API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DatabaseUnavailable)
async def database_unavailable_handler(request: Request, exc: DatabaseUnavailable):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry"})


app.include_router(auth.router)
app.include_router(profiles.router)
app.include_router(products.router)
app.include_router(wishlist.router)
app.include_router(orders.router)
app.include_router(messaging.router)
app.include_router(storage.router)


@app.get("/")
def read_root():
    return {"message": "Campus Marketplace backend running"}


@app.get("/test")
def test_database():
    """Health report: whether the store is configured, reachable and seeded."""
    store = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "categories": 0,
    }
    if store is None:
        response["database"] = "⚠️ Available but not initialized"
        return response
    response["database"] = "✅ Available"
    response["database_name"] = store.name
    response["connection_status"] = "Connected"
    try:
        response["collections"] = sorted(store.list_collection_names())[:10]
        response["categories"] = store.category.count_documents({})
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        logger.error("Health check failed: %s", e)
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
