from __future__ import annotations

import os
from pathlib import Path
from typing import List


class Settings:
    """Centralized configuration for the MyMacro backend."""

    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent
        repo_root = base_dir.parent
        data_root_default = repo_root / "data"

        self.data_root: Path = Path(
            os.environ.get("MYMACRO_DATA_ROOT") or data_root_default
        ).expanduser()
        self.app_db_path: Path = Path(
            os.environ.get("MYMACRO_DB_PATH") or (self.data_root / "mymacro.db")
        ).expanduser()
        # In production you MUST set MYMACRO_JWT_SECRET. The dev fallback keeps local runs easy.
        self.jwt_secret: str = os.environ.get("MYMACRO_JWT_SECRET") or "dev-secret-change-me"
        self.token_ttl_days: int = int(os.environ.get("MYMACRO_TOKEN_TTL_DAYS") or "7")
        self.cookie_secure: bool = (os.environ.get("MYMACRO_COOKIE_SECURE") or "").strip() in {"1", "true", "True"}
        self.log_level: str = (os.environ.get("MYMACRO_LOG_LEVEL") or "INFO").strip().upper()

        # ---- Referrals ----
        self.referral_credit: int = int(os.environ.get("MYMACRO_REFERRAL_CREDIT") or "5")
        self.share_base_url: str = os.environ.get("MYMACRO_SHARE_BASE_URL") or "https://mymacro.ai/u/"
        # Seconds to wait before asking the directory whether a code exists.
        self.referral_verify_delay: float = float(os.environ.get("MYMACRO_REFERRAL_VERIFY_DELAY") or "0")

        cors = os.environ.get("MYMACRO_CORS_ORIGINS", "*")
        if cors.strip() == "*":
            self.cors_origins: List[str] = ["*"]
        else:
            self.cors_origins = [
                origin.strip() for origin in cors.split(",") if origin.strip()
            ]


settings = Settings()
