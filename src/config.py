from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "grayscale-gateway"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    cors_origins: list[str] = ["*"]
    session_ttl: float = 3600.0

    uploads_path: str = "/app/uploads"
    convert_url: str = "https://apigrayfy.onrender.com/grayscale"
    convert_timeout: float = 30.0
    convert_max_attempts: int = 1
    proxies: list[str] = []
    proxy_strategy: str = "round-robin"

    api_base_url: str = "http://localhost:5000"
    health_check_path: str = "/health"
    health_check_timeout: float = 5.0


settings = Settings()
