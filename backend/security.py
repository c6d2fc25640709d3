import os
import hmac
from dotenv import load_dotenv
from fastapi import HTTPException, Header

load_dotenv()
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "change-me")

def verify_admin(admin_api_key: str = Header(default="", alias="Admin-API-Key")):
    """Guard for survey management, export and import endpoints."""
    if not hmac.compare_digest(admin_api_key.encode("utf-8"), ADMIN_API_KEY.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin API key")
