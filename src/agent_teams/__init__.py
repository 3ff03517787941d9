"""Leader/worker orchestration for delegating tickets to subagent processes."""

__version__ = "0.3.0"
