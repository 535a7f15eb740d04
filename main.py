import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

import database
from config import APP_NAME, CORS_ORIGINS, DATABASE_NAME, DATABASE_URL, SESSION_SECRET
from errors import envelope, register_error_handlers
from logger import get_logger
from routers import addresses, admin, auth, cart, categories, orders, products, reviews, wishlist

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
        logger.info("Indexes ensured")
    yield


app = FastAPI(title=APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# signed cookie that carries the guest cart id
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax")

register_error_handlers(app)

app.include_router(auth.router)
app.include_router(categories.router)
app.include_router(products.router)
app.include_router(products.search_router)
app.include_router(reviews.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(addresses.router)
app.include_router(wishlist.router)
app.include_router(admin.router)


@app.get("/")
def read_root():
    return {"message": "E‑commerce backend is running"}


@app.get("/api/health")
def health():
    response = {
        "backend": "running",
        "database": "not available",
        "database_url": "set" if DATABASE_URL else "not set",
        "database_name": "set" if DATABASE_NAME else "not set",
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "connected"
        except Exception as e:
            logger.warning("Database health check failed: %s", e)
            response["database"] = f"connected but error: {str(e)[:50]}"
    return envelope(response)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
