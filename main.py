import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import analytics
import cart
import catalog
import config
import database
import orders
import users
from database import get_db
from errors import ShopError
from security import require


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("database_not_configured")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users.router)
app.include_router(catalog.router)
app.include_router(cart.cart_router)
app.include_router(cart.wishlist_router)
app.include_router(orders.router)
app.include_router(analytics.router)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")


# ----------------------- Error envelope -----------------------
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = f"{field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"success": True, "message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Women Round Neck Cotton Top",
        "description": "A lightweight, breathable cotton top for everyday wear.",
        "price": 100,
        "category": "Women",
        "sub_category": "Topwear",
        "sizes": ["S", "M", "L"],
        "bestseller": True,
        "stock": 40,
        "image": ["https://images.unsplash.com/photo-1521572163474-6864f9cf17ab"],
    },
    {
        "name": "Men Slim Fit Denim Jacket",
        "description": "Classic mid-wash denim with a tailored cut.",
        "price": 220,
        "category": "Men",
        "sub_category": "Winterwear",
        "sizes": ["M", "L", "XL"],
        "bestseller": False,
        "stock": 15,
        "image": ["https://images.unsplash.com/photo-1551537482-f2075a1d41f2"],
    },
    {
        "name": "Kids Relaxed Fit Joggers",
        "description": "Soft fleece joggers with an elastic waistband.",
        "price": 80,
        "category": "Kids",
        "sub_category": "Bottomwear",
        "sizes": ["S", "M"],
        "bestseller": True,
        "stock": 30,
        "image": ["https://images.unsplash.com/photo-1503919545889-aef636e10ad4"],
    },
    {
        "name": "Men Printed Plain Cotton Shirt",
        "description": "Crisp cotton shirt with a subtle all-over print.",
        "price": 140,
        "category": "Men",
        "sub_category": "Topwear",
        "sizes": ["S", "M", "L", "XL"],
        "bestseller": False,
        "stock": 25,
        "image": ["https://images.unsplash.com/photo-1596755094514-f87e34085b2c"],
    },
]


@app.post("/seed")
def seed(_admin: dict = Depends(require("catalog:write")), db: Database = Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return {"success": True, "seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        catalog.create_product(db, p)
    return {"success": True, "seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
