from .store import MAX_MEMORIES, RETENTION_SECONDS, WorkflowMemory, is_similar_goal

__all__ = ["MAX_MEMORIES", "RETENTION_SECONDS", "WorkflowMemory", "is_similar_goal"]
