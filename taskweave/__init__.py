"""taskweave - task relationship and workflow consistency engine."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "codec",
    "config",
    "engine",
    "engine_logging",
    "errors",
    "groupings",
    "ids",
    "layout",
    "locks",
    "migrator",
    "models",
    "normalizers",
    "phases",
    "query",
    "relationships",
    "sequencing",
    "store",
]
