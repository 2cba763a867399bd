"""Job engine: agent cache, scheduler, fan-out planner, event broadcaster, facade."""

__all__ = [
    "agent_cache",
    "broadcaster",
    "engine",
    "planner",
    "scheduler",
]
