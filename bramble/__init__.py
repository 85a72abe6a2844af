"""Query plan execution, result merging and GraphQL formatting for a federated gateway."""

__version__ = "0.1.0"
__all__ = ["ast", "formatting", "selection", "results", "execution"]