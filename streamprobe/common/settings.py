# streamprobe/common/settings.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List
from pydantic import BaseModel, Field, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from streamprobe.common.strings.splitters import csv_to_list


def _to_bool(v: str | bool | int | None, default: bool = False) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return default
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "y", "on"}


class EndpointConfig(BaseModel):
    # Control plane (HTTP API) of the server under test
    http: str = "http://localhost:2022"
    # Media plane
    rtmp: str = "rtmp://localhost"
    http_stream: str = "http://localhost:8080"

    api_secret: str = ""
    https_insecure_verify: bool = False

    @field_validator("https_insecure_verify", mode="before")
    @classmethod
    def _boolify(cls, v):
        return _to_bool(v)

    @field_validator("http", "rtmp", "http_stream")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class MediaConfig(BaseModel):
    input_file: Path = Path("avatar.flv")
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    # Where the server looks for uploaded source files; first match wins.
    upload_dirs_csv: str = "/data/upload/,platform/containers/data/upload,../platform/containers/data/upload"

    @computed_field  # type: ignore[misc]
    @property
    def upload_dirs(self) -> List[str]:
        return csv_to_list(self.upload_dirs_csv)


class TimeoutConfig(BaseModel):
    """All values in seconds."""
    case: float = Field(30.0, gt=0)
    long_case: float = Field(120.0, gt=0)
    probe_duration: float = Field(16.0, gt=0)
    probe_timeout: float = Field(21.0, gt=0)
    grace: float = Field(5.0, ge=0)

    @model_validator(mode="after")
    def _probe_timeout_covers_duration(self) -> "TimeoutConfig":
        if self.probe_timeout <= self.probe_duration:
            raise ValueError("probe_timeout must exceed probe_duration")
        return self


class FeatureFlags(BaseModel):
    skip_media_tests: bool = False
    skip_bilibili_tests: bool = False
    e2e: bool = False
    letsencrypt_domain: str = ""

    @field_validator("skip_media_tests", "skip_bilibili_tests", "e2e", mode="before")
    @classmethod
    def _boolify(cls, v):
        return _to_bool(v)


class Settings(BaseSettings):
    # -------- App / Env --------
    app_name: str = "streamprobe"
    log_level: str = "INFO"

    # Scratch space for capture files
    work_dir: Path = Path(".")

    # -------- Sub-configs --------
    endpoints: EndpointConfig = EndpointConfig()
    media: MediaConfig = MediaConfig()
    timeouts: TimeoutConfig = TimeoutConfig()
    features: FeatureFlags = FeatureFlags()

    model_config = SettingsConfigDict(
        env_prefix="STREAMPROBE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Convenience =====
    @computed_field  # type: ignore[misc]
    @property
    def media_tests_enabled(self) -> bool:
        return not self.features.skip_media_tests

    def capture_path(self, file_name: str) -> Path:
        return self.work_dir / file_name


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Global settings accessor (cached). Scenario code reads config here and
    passes plain values into the supervisors:
        from streamprobe.common.settings import get_settings
        cfg = get_settings()
    """
    s = Settings()
    s.work_dir.mkdir(parents=True, exist_ok=True)
    return s
