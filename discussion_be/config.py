# discussion_be/config.py


from dotenv import load_dotenv
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # read .env first so plain os.getenv callers see the same values

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    # environment
    app_env: str = "local"
    log_level: str = "INFO"

    # DB (required)
    database_url: str                        # DATABASE_URL

    # OpenAI scoring service
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o"
    scoring_timeout_seconds: float = 120.0

    # Supabase realtime (notification channel)
    supabase_url: str | None = None          # SUPABASE_URL
    supabase_service_role_key: str | None = None

    # Agora cloud recording
    agora_app_id: str | None = None
    agora_customer_id: str | None = None
    agora_customer_secret: str | None = None
    agora_base_url: str = "https://api.agora.io"
    http_timeout_seconds: float = 15.0
    recording_resource_expired_hour: int = 24
    recording_max_idle_time: int = 60
    recording_composite_uid: str = "123"   # recorder bot uids, distinct from participants
    recording_individual_uid: str = "456"

    # recording storage (vendor 1 = Amazon S3)
    storage_vendor: int = 1
    storage_region: int = 0
    s3_bucket_name: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None

    # session timing / limits
    waiting_room_seconds: int = 300
    preparation_seconds: int = 600
    discussion_seconds: int = 480
    max_participants: int = 4
    session_code_length: int = 6

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()

if __name__ == "__main__":
    print("BASE_DIR:", BASE_DIR)
    print("DATABASE_URL:", settings.database_url)
    print("AGORA_APP_ID:", settings.agora_app_id)
