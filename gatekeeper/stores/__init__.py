"""Durable state behind the admission gate."""
from .blocklist import BlockListStore, BlockListUnavailable  # noqa: F401
from .counter import ClientCounterStore, CounterState, CounterStatus  # noqa: F401
