import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", 7))

# Bootstrap admin accepted by /user/admin before any admin account exists
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

DELIVERY_FEE = float(os.getenv("DELIVERY_FEE", 50))
PAYMENT_REDIRECT_URL = os.getenv("PAYMENT_REDIRECT_URL", "http://localhost:5173/verify")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_PRODUCT_IMAGES = 4
MIN_PASSWORD_LENGTH = 8

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
