from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://boardflow:boardflow@db:5432/boardflow"
  app_version: str = "v2026-10-18"
  build_sha: str = "dev"

  log_level: str = "INFO"
  log_json: bool = False

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,api,web,test"

  rule_chain_depth_cap: int = 10
  scope_lock_timeout_seconds: float = 10.0
  due_date_scan_enabled: bool = True
  due_date_scan_interval_seconds: int = 300

  default_group_color: str = "#3498db"
  default_column_width: int = 150

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]

  def is_sqlite(self) -> bool:
    return self.database_url.startswith("sqlite")


settings = Settings()
