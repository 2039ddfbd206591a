from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ValidationError

from .errors import ConfigError


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./syllabank.db"


class Settings(BaseModel):
    database_url: str = DEFAULT_DATABASE_URL
    course_csv: Optional[str] = None
    professor_csv: Optional[str] = None
    filename_csv: Optional[str] = None
    syllabi_csv: Optional[str] = None
    web_host: str = "127.0.0.1"
    web_port: int = 8000
    web_pdf_dir: str = "pdfs"
    web_site_dir: str = "site"
    web_homepage: str = "index.html"
    log_level: str = "INFO"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables named after the fields in upper case
    (DATABASE_URL, COURSE_CSV, WEB_PORT, ...). Empty values count as unset.
    """
    env = os.environ if environ is None else environ
    values = {}
    for name in Settings.model_fields:
        raw = env.get(name.upper())
        if raw is not None and raw.strip():
            values[name] = raw.strip()
    try:
        return Settings(**values)
    except ValidationError as exc:
        bad = ", ".join(str(err["loc"][0]).upper() for err in exc.errors())
        raise ConfigError(f"Invalid configuration value for {bad}") from exc


def configure_logging(level: str = "INFO") -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ConfigError(f"Unknown log level {level!r}")
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
