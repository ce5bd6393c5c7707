from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "exam-portal"
    environment: str = "local"
    debug: bool = True

    mongo_port: int = 27017
    mongo_host: str = "localhost"
    mongo_db: str = "exam_portal"
    mongo_password: str | None = None
    mongo_params: str | None = None
    mongo_user: str | None = None
    mongo_srv: bool = False
    mongo_url: str | None = None

    jwt_algorithm: str = "HS256"
    jwt_secret_key: str = "very-secret-key"
    access_token_expires_minutes: int = 60
    refresh_token_expires_days: int = 7

    redis_db: int = 0
    redis_port: int = 6379
    redis_host: str = "localhost"
    redis_password: str | None = None

    log_level: str = "INFO"
    log_dir: str | None = None

    # Seconds past an attempt's deadline before the server finalises it.
    attempt_grace_seconds: int = 120
    summary_cache_ttl_seconds: int = 60

    model_config = SettingsConfigDict(env_file=(".env",), case_sensitive=True, extra="ignore")

    @property
    def mongo_uri(self) -> str:
        if self.mongo_url:
            return self.mongo_url
        auth = ""
        if self.mongo_user and self.mongo_password:
            auth = f"{self.mongo_user}:{self.mongo_password}@"
        if self.mongo_srv:
            params = self.mongo_params or "retryWrites=true&w=majority"
            return f"mongodb+srv://{auth}{self.mongo_host}/{self.mongo_db}?{params}"
        params = f"?{self.mongo_params}" if self.mongo_params else ""
        return f"mongodb://{auth}{self.mongo_host}:{self.mongo_port}/{self.mongo_db}{params}"


settings = Settings()
