import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()  # loads .env for local dev


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    env: str = os.getenv("ENV", "local")
    service_name: str = os.getenv("SERVICE_NAME", "salesops-engine")
    database_url: str = os.getenv("DATABASE_URL", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Identity matching
    match_tolerance_seconds: int = int(os.getenv("MATCH_TOLERANCE_SECONDS", "120"))

    # CRM enrichment (HubSpot / Close lookups before the event upsert)
    crm_enrichment_enabled: bool = _env_bool("CRM_ENRICHMENT_ENABLED")
    crm_timeout_seconds: float = float(os.getenv("CRM_TIMEOUT_SECONDS", "10"))
    close_api_key: str = os.getenv("CLOSE_API_KEY", "")
    hubspot_api_key: str = os.getenv("HUBSPOT_API_KEY", "")

settings = Settings()
