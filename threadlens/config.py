"""Runtime configuration loaded from the environment.

Values come from process environment variables, with a `.env` file in the
project root loaded first when present. Numeric values are bounds-checked;
anything invalid or out of range falls back to its default with a warning.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).parent.parent / ".env"

DEFAULT_DATABASE_URL = "postgresql://localhost:5432/threadlens"
DEFAULT_USER_AGENT = "threadlens/0.1 (subreddit analytics)"
DEFAULT_LABELING_MODEL = "gpt-4o-mini"


def _parse_env_int(name: str, default: int, min_val: int, max_val: int) -> int:
    """Parse an integer environment variable with bounds checking.

    Args:
        name: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value (inclusive)
        max_val: Maximum allowed value (inclusive)

    Returns:
        Parsed integer within bounds, or default if invalid
    """
    try:
        val = int(os.getenv(name, str(default)))
        if not (min_val <= val <= max_val):
            logger.warning(f"{name}={val} out of bounds [{min_val}, {max_val}], using {default}")
            return default
        return val
    except ValueError:
        logger.warning(f"{name} invalid, using {default}")
        return default


def _parse_env_float(name: str, default: float, min_val: float, max_val: float) -> float:
    """Float counterpart of _parse_env_int."""
    try:
        val = float(os.getenv(name, str(default)))
        if not (min_val <= val <= max_val):
            logger.warning(f"{name}={val} out of bounds [{min_val}, {max_val}], using {default}")
            return default
        return val
    except ValueError:
        logger.warning(f"{name} invalid, using {default}")
        return default


def _parse_env_list(name: str) -> List[str]:
    """Parse a comma-separated environment variable into stripped, non-empty entries."""
    raw = os.getenv(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    """All tunables for the ingestion, labeling and staff tracking jobs."""

    database_url: str = DEFAULT_DATABASE_URL
    db_pool_min: int = 1
    db_pool_max: int = 5

    # Reddit
    reddit_client_id: Optional[str] = None
    reddit_client_secret: Optional[str] = None
    reddit_refresh_token: Optional[str] = None
    reddit_user_agent: str = DEFAULT_USER_AGENT
    subreddit: str = "FACEITcom"

    # Labeling model
    openai_api_key: Optional[str] = None
    labeling_model: str = DEFAULT_LABELING_MODEL
    llm_timeout_seconds: float = 30.0
    llm_max_retries: int = 2
    llm_retry_base_delay: float = 1.0
    llm_retry_max_delay: float = 10.0
    llm_input_cost_per_million: float = 0.15
    llm_output_cost_per_million: float = 0.60
    post_content_limit: int = 2500
    reply_content_limit: int = 1500

    # Ingestion
    include_keywords: List[str] = field(default_factory=list)
    exclude_keywords: List[str] = field(default_factory=list)
    item_delay_seconds: float = 2.0
    window_delay_seconds: float = 60.0
    posts_per_window: int = 1000
    reply_fetch_limit: int = 200
    replies_per_post: int = 50

    # Labeling batches
    analysis_batch_size: int = 100
    analysis_delay_seconds: float = 3.0

    # Staff
    staff_usernames: List[str] = field(default_factory=list)
    staff_roster_ttl_seconds: int = 86400
    staff_roster_retry_seconds: int = 60

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Build settings from the environment (and `.env`, when present)."""
        if load_dotenv_file:
            load_dotenv(ENV_PATH)

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            db_pool_min=_parse_env_int("DB_POOL_MIN", 1, 1, 20),
            db_pool_max=_parse_env_int("DB_POOL_MAX", 5, 1, 50),
            reddit_client_id=os.getenv("REDDIT_CLIENT_ID"),
            reddit_client_secret=os.getenv("REDDIT_CLIENT_SECRET"),
            reddit_refresh_token=os.getenv("REDDIT_REFRESH_TOKEN"),
            reddit_user_agent=os.getenv("REDDIT_USER_AGENT", DEFAULT_USER_AGENT),
            subreddit=os.getenv("SUBREDDIT", "FACEITcom"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            labeling_model=os.getenv("LABELING_MODEL", DEFAULT_LABELING_MODEL),
            llm_timeout_seconds=_parse_env_float("LLM_TIMEOUT_SECONDS", 30.0, 1.0, 600.0),
            llm_max_retries=_parse_env_int("LLM_MAX_RETRIES", 2, 0, 10),
            llm_retry_base_delay=_parse_env_float("LLM_RETRY_BASE_DELAY", 1.0, 0.0, 60.0),
            llm_retry_max_delay=_parse_env_float("LLM_RETRY_MAX_DELAY", 10.0, 0.0, 300.0),
            llm_input_cost_per_million=_parse_env_float("LLM_INPUT_COST_PER_MILLION", 0.15, 0.0, 1000.0),
            llm_output_cost_per_million=_parse_env_float("LLM_OUTPUT_COST_PER_MILLION", 0.60, 0.0, 1000.0),
            post_content_limit=_parse_env_int("POST_CONTENT_LIMIT", 2500, 100, 100000),
            reply_content_limit=_parse_env_int("REPLY_CONTENT_LIMIT", 1500, 100, 100000),
            include_keywords=_parse_env_list("INCLUDE_KEYWORDS"),
            exclude_keywords=_parse_env_list("EXCLUDE_KEYWORDS"),
            item_delay_seconds=_parse_env_float("ITEM_DELAY_SECONDS", 2.0, 0.0, 600.0),
            window_delay_seconds=_parse_env_float("WINDOW_DELAY_SECONDS", 60.0, 0.0, 3600.0),
            posts_per_window=_parse_env_int("POSTS_PER_WINDOW", 1000, 1, 10000),
            reply_fetch_limit=_parse_env_int("REPLY_FETCH_LIMIT", 200, 1, 500),
            replies_per_post=_parse_env_int("REPLIES_PER_POST", 50, 0, 500),
            analysis_batch_size=_parse_env_int("ANALYSIS_BATCH_SIZE", 100, 1, 10000),
            analysis_delay_seconds=_parse_env_float("ANALYSIS_DELAY_SECONDS", 3.0, 0.0, 600.0),
            staff_usernames=_parse_env_list("STAFF_USERNAMES"),
            staff_roster_ttl_seconds=_parse_env_int("STAFF_ROSTER_TTL_SECONDS", 86400, 0, 30 * 86400),
            staff_roster_retry_seconds=_parse_env_int("STAFF_ROSTER_RETRY_SECONDS", 60, 0, 86400),
        )

    def require_reddit(self) -> None:
        """Raise ConfigurationError unless Reddit OAuth credentials are present."""
        missing = [
            name for name, value in (
                ("REDDIT_CLIENT_ID", self.reddit_client_id),
                ("REDDIT_CLIENT_SECRET", self.reddit_client_secret),
                ("REDDIT_REFRESH_TOKEN", self.reddit_refresh_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} not set")

    def require_openai(self) -> None:
        """Raise ConfigurationError unless the labeling model key is present."""
        if not self.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY not set")
