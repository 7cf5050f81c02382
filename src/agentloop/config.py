"""Settings read from the environment (and a ``.env`` file, if present)."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import InitializationError
from .invocation import (
    DEFAULT_MAX_CONSECUTIVE_ERRORS,
    DEFAULT_MAX_ITERATIONS,
    InvocationConfig,
)

DEFAULT_MODEL = "gpt-4o"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise InitializationError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_org_id: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS
    detailed_errors: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True, env_file: Optional[str] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            dotenv: Load a ``.env`` file first; existing variables take precedence
            env_file: Path of the file to load; searched for when omitted

        Raises:
            InitializationError: If a numeric variable is not an integer
        """
        if dotenv:
            load_dotenv(dotenv_path=env_file)
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            openai_org_id=os.getenv("OPENAI_ORG_ID") or None,
            model=os.getenv("AGENTLOOP_MODEL") or DEFAULT_MODEL,
            max_iterations=_int_env("AGENTLOOP_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
            max_consecutive_errors=_int_env(
                "AGENTLOOP_MAX_CONSECUTIVE_ERRORS", DEFAULT_MAX_CONSECUTIVE_ERRORS
            ),
            detailed_errors=os.getenv("AGENTLOOP_DETAILED_ERRORS", "").strip().lower()
            in _TRUE_VALUES,
            log_level=(os.getenv("AGENTLOOP_LOG_LEVEL") or "INFO").upper(),
        )

    def invocation_config(self) -> InvocationConfig:
        return InvocationConfig(
            max_iterations=self.max_iterations,
            max_consecutive_errors=self.max_consecutive_errors,
            include_detailed_errors=self.detailed_errors,
        )

    def configure_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
