import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
if ENV_PATH.exists():
    # ensure .env values override empty/previous env
    load_dotenv(ENV_PATH, override=True)
    # BOM-safe fallback: if key was \ufeffGOOGLE_SHEETS_ID
    if not os.getenv("GOOGLE_SHEETS_ID"):
        for line in ENV_PATH.read_text(encoding="utf-8").splitlines():
            line = line.lstrip("\ufeff")
            if line.startswith("GOOGLE_SHEETS_ID="):
                os.environ["GOOGLE_SHEETS_ID"] = line.split("=", 1)[1].strip()
                break

class Settings(BaseModel):
    # Google Sheets (lead capture)
    google_sheets_id: str = os.getenv("GOOGLE_SHEETS_ID", "")
    google_sheet_name: str = os.getenv("GOOGLE_SHEET_NAME", "WTF Games Email Submissions")
    google_project_id: str = os.getenv("GOOGLE_PROJECT_ID", "")
    google_private_key_id: str = os.getenv("GOOGLE_PRIVATE_KEY_ID", "")
    google_private_key: str = os.getenv("GOOGLE_PRIVATE_KEY", "")
    google_private_key_base64: str = os.getenv("GOOGLE_PRIVATE_KEY_BASE64", "")
    google_client_email: str = os.getenv("GOOGLE_CLIENT_EMAIL", "")
    google_client_id: str = os.getenv("GOOGLE_CLIENT_ID", "")

    # Meta Conversions API (tracking)
    meta_pixel_id: str = os.getenv("META_PIXEL_ID", "")
    meta_access_token: str = os.getenv("META_ACCESS_TOKEN", "")
    meta_api_version: str = os.getenv("META_API_VERSION", "v18.0")

    # Wheel tuning
    spin_min_revolutions: int = int(os.getenv("SPIN_MIN_REVOLUTIONS", "5"))
    spin_duration_seconds: float = float(os.getenv("SPIN_DURATION_SECONDS", "10"))
    spin_settle_seconds: float = float(os.getenv("SPIN_SETTLE_SECONDS", "0.5"))
    # JSON list of {"min_degree", "max_degree", "amount"}; empty -> built-in table
    prize_segments: str | None = os.getenv("PRIZE_SEGMENTS") or None

    allowed_origins: list[str] = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
    ]
    allowed_origin_regex: str | None = os.getenv("ALLOWED_ORIGIN_REGEX") or None

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
