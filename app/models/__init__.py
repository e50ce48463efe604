from app.models.task_checkpoint import TaskCheckpoint

__all__ = ["TaskCheckpoint"]
