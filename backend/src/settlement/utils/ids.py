"""Payment id generation."""
from typing import Callable
from uuid import uuid4

# Any zero-argument callable returning a fresh id can be injected.
IdGenerator = Callable[[], str]


class PaymentIdGenerator:
    """Generates opaque payment ids of the form ``pay-<uuid4 hex>``."""

    def __init__(self, prefix: str = "pay"):
        self.prefix = prefix

    def __call__(self) -> str:
        return f"{self.prefix}-{uuid4().hex}"
