from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Completion API used for SQL generation and summaries
    MISTRAL_API_KEY: Optional[str] = None
    LLM_API_URL: str = "https://api.mistral.ai/v1/chat/completions"
    LLM_MODEL: str = "mistral-small-latest"
    LLM_MAX_RETRIES: int = 3
    LLM_INITIAL_DELAY_MS: int = 1000
    SUMMARY_ROW_LIMIT: int = 50

    # Datastore reachable only through the exec_sql remote procedure
    DATASTORE_BACKEND: str = "rpc"  # "rpc" (PostgREST) or "database" (SQLAlchemy)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    DATABASE_URL: Optional[str] = None
    EXEC_SQL_FUNCTION: str = "exec_sql"
    DATASTORE_TIMEOUT_SECONDS: float = 30.0

    SCHEMA_FILE_PATHS: List[str] = ["schema_supabase.txt", "../schema_supabase.txt"]
    SQL_PARSER_CHECK: bool = True

    # Bearer tokens are issued by the identity provider and signed with its JWT secret
    SECRET_KEY: Optional[str] = None
    ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = "authenticated"

    # Admin assistant chat
    ASSISTANT_API_URL: str = "https://api.openai.com/v1/chat/completions"
    ASSISTANT_API_KEY: Optional[str] = None
    ASSISTANT_MODEL: str = "gpt-3.5-turbo"

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
