from .main import run_batch

__all__ = ["run_batch"]
