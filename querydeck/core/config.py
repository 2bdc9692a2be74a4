from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SQL_ECHO: bool = False

    # Hard cap on rows returned by a single custom query run
    QUERY_ROW_LIMIT: int = 1000

    # Where the admin client finds the query definition store
    STORE_BASE_URL: str = "http://localhost:8000"
    STORE_TIMEOUT_SECONDS: float = 30.0

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
