import os
import secrets
from dataclasses import dataclass


@dataclass(frozen=True)
class ApiConfig:
    mode: str  # "dev" | "testnet" | "prod"
    admin_token: str | None


def load_api_config() -> ApiConfig:
    mode = os.getenv("EPOCHFLOW_MODE", "prod").strip().lower()
    token = (os.getenv("EPOCHFLOW_ADMIN_TOKEN") or "").strip() or None
    return ApiConfig(mode=mode, admin_token=token)


def admin_token_matches(cfg: ApiConfig, presented: str | None) -> bool:
    """
    Check an operator-presented admin token.

    No configured token means the admin routes rely on engine-side caller
    checks only.
    """
    if not cfg.admin_token:
        return True
    if not presented:
        return False
    return secrets.compare_digest(presented.strip().encode("utf-8"), cfg.admin_token.encode("utf-8"))
