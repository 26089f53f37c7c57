"""Exception types shared across the pipeline."""


class ConfigurationError(ValueError):
    """Raised at startup when required settings or credentials are missing."""


class ModelResponseError(Exception):
    """Raised when the labeling model returns text that is not a JSON object."""


class PersistenceError(Exception):
    """Raised when a write did not take effect after its retry."""

    def __init__(self, item_kind: str, item_id: str, message: str):
        self.item_kind = item_kind
        self.item_id = item_id
        super().__init__(f"{item_kind} {item_id}: {message}")
