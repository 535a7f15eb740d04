"""
Runtime settings for the shop backend.

Values come from the environment (a local .env file is loaded first).
"""
import os

from dotenv import load_dotenv

load_dotenv()

APP_NAME = os.getenv("APP_NAME", "E‑Commerce API")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
SESSION_SECRET = os.getenv("SESSION_SECRET", SECRET_KEY)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Inventory
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 10))
STOCK_UPDATE_RETRIES = int(os.getenv("STOCK_UPDATE_RETRIES", 5))
CART_UPDATE_RETRIES = int(os.getenv("CART_UPDATE_RETRIES", 5))

# Pricing
TAX_RATE = float(os.getenv("TAX_RATE", 0.1))
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", 5.0))
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", 100.0))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
