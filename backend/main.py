# backend/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

load_dotenv()

from config import settings
from database import init_db
from errors import CheckoutError

# Router imports
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.orders import router as orders_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialization
init_db()

app = FastAPI(title="Storefront Checkout API", version="1.0.0")

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Router registration
app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(orders_router)


@app.get("/")
def read_root():
    return {"message": "Storefront Checkout API is running"}
