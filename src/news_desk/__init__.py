"""Industry news discovery, enrichment, and report publishing with OpenAI models."""

__all__ = [
    "config",
    "enrichment",
    "export",
    "github",
    "ledger",
    "models",
    "normalizer",
    "publish",
    "session",
    "store",
    "tasks",
]
