from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 10.0

    autosave_interval_seconds: float = 30.0
    tick_interval_seconds: float = 1.0
    # Percentage of total marks needed for a "Pass" on the review screen
    pass_percentage: float = 40.0
    require_camera: bool = False
    draft_dir: str = ".exam_drafts"

    model_config = SettingsConfigDict(env_prefix="EXAM_CLIENT_", env_file=(".env",), extra="ignore")
