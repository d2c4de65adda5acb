"""Lumen Identity Server Configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    app_name: str = "Lumen Identity Server"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"

    # Paths
    data_dir: Path = Path.home() / "lumen" / "data"

    # Database
    db_path: Path = Path.home() / "lumen" / "data" / "lumen.db"
    transaction_attempts: int = 10

    # Device identity
    device_id_salt: str = ""
    device_id_header: str = "x-device-id"
    device_cookie_name: str = "lumen_device_id"
    device_cookie_max_age: int = 60 * 60 * 24 * 365 * 2  # 2 years

    # Exposes raw identifiers; keep off outside of troubleshooting
    identity_debug: bool = False

    # Migration
    migration_token_ttl_hours: int = 24

    model_config = {"env_prefix": "LUMEN_"}

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)


settings = Settings()
settings.ensure_dirs()
