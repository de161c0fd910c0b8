# config.py
import os
from dotenv import load_dotenv

load_dotenv()

# DB_FILE follows the same convention as database.py: relative paths resolve next to the code
DB_FILE = os.getenv("DB_FILE", "paystub.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SEED_CATALOG_FILE = os.getenv("SEED_CATALOG_FILE", "")
SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", "15"))
