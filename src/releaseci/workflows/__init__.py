from .crate import workflow as crate_workflow

__all__ = ["crate_workflow"]
