"""threadlens: subreddit ingestion, LLM labeling and staff response tracking."""

__version__ = "0.1.0"
