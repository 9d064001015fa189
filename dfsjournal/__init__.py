"""Operation journal, checkpoints and log-replay recovery for a file system master."""

__version__ = "0.1.0"
__all__ = ["config", "records", "framing", "log_manager", "state", "recovery"]