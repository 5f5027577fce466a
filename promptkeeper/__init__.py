"""PromptKeeper: versioned prompt storage with history, diffs and import/export."""

__version__ = "0.1.0"
