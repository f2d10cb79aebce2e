"""Domain layer for stmtflow application."""

# Services are imported lazily: database.base imports domain.entities,
# so importing the services here would be circular.
_SERVICES = {
    "CategoryService": "stmtflow.domain.category",
    "MappingConfigService": "stmtflow.domain.mapping",
    "MappingRegistry": "stmtflow.domain.mapping",
    "StatementPipeline": "stmtflow.domain.pipeline",
    "StatementService": "stmtflow.domain.statement",
}

__all__ = list(_SERVICES)


def __getattr__(name):
    if name in _SERVICES:
        import importlib

        return getattr(importlib.import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
