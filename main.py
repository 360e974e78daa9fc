import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart
import catalog
import cron
import orders
import tickets
import uploads
import users
from database import create_document, db, ensure_indexes
from schemas import Category as CategorySchema, Product as ProductSchema, User as UserSchema
from security import hash_password

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except Exception:
        logger.exception("Could not ensure indexes")
    yield


app = FastAPI(title="KOI HelpDesk & Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (users, tickets, catalog, cart, orders, uploads, cron):
    app.include_router(module.router)


# ----------------------- Errors -----------------------
def flatten_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path", "header")]
    msg = first.get("msg", "Invalid value")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return f"{'.'.join(loc)}: {msg}" if loc else msg


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": flatten_validation_error(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "KOI HelpDesk & Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Seed Demo Data -----------------------
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@koi.shop")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

DEMO_CATEGORIES = [
    {"name": "Hoodies", "kind": "category"},
    {"name": "T-Shirts", "kind": "category"},
    {"name": "Accessories", "kind": "category"},
    {"name": "Winter Drop", "kind": "collection"},
]

DEMO_PRODUCTS = [
    {
        "title": "KOI Oversized Hoodie",
        "description": "Heavyweight fleece hoodie with embroidered koi.",
        "brand": "KOI",
        "category": "hoodies",
        "collection": "winter-drop",
        "price": 79.0,
        "discount": 10,
        "colors": ["black", "sand"],
        "sizes": ["S", "M", "L", "XL"],
        "images": [{"url": "https://images.unsplash.com/photo-1556821840-3a63f95609a7", "public_id": None}],
    },
    {
        "title": "Wave Graphic Tee",
        "description": "Boxy cotton tee with a back wave print.",
        "brand": "KOI",
        "category": "t-shirts",
        "collection": None,
        "price": 35.0,
        "discount": 0,
        "colors": ["white", "black"],
        "sizes": ["S", "M", "L"],
        "images": [{"url": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab", "public_id": None}],
    },
    {
        "title": "Koi Beanie",
        "description": "Ribbed knit beanie with woven label.",
        "brand": "KOI",
        "category": "accessories",
        "collection": "winter-drop",
        "price": 22.0,
        "discount": 0,
        "colors": ["black"],
        "sizes": ["OS"],
        "images": [{"url": "https://images.unsplash.com/photo-1576871337622-98d48d1cf531", "public_id": None}],
    },
]


@app.post("/seed")
def seed():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    if db["user"].count_documents({"role": "admin"}) == 0:
        admin = UserSchema(name="Admin", email=ADMIN_EMAIL.lower(),
                           password_hash=hash_password(ADMIN_PASSWORD), role="admin")
        create_document("user", admin)
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}

    slugs = {}
    for c in DEMO_CATEGORIES:
        slug = catalog.slugify(c["name"])
        existing = db["category"].find_one({"slug": slug})
        if existing:
            slugs[slug] = str(existing["_id"])
            continue
        category = CategorySchema(name=c["name"], slug=slug, kind=c["kind"])
        slugs[slug] = create_document("category", category)

    for p in DEMO_PRODUCTS:
        data = dict(p)
        category_id = slugs[data.pop("category")]
        collection = data.pop("collection")
        variants = [{"color": c, "size": s, "stock": 10} for c in data["colors"] for s in data["sizes"]]
        product = ProductSchema(
            category_id=category_id,
            collection_id=slugs.get(collection) if collection else None,
            variants=variants,
            **data,
        )
        create_document("product", product)
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
