from __future__ import annotations

from typing import Optional


class IdeaExplorerError(Exception):
    """Base class for every error raised by idea_explorer."""


class StorageFault(IdeaExplorerError):
    def __init__(self, operation: str, key: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        key_info = f" (key: {key})" if key else ""
        super().__init__(f"Storage {operation} failed{key_info}: {cause}")
        self.operation = operation
        self.key = key
        self.cause = cause


class ParseFault(IdeaExplorerError):
    def __init__(self, context: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"JSON parse failed ({context}): {cause}")
        self.context = context
        self.cause = cause


class NotFound(IdeaExplorerError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class ConflictFault(IdeaExplorerError):
    def __init__(self, path: str) -> None:
        super().__init__(f"GitHub conflict on path: {path}")
        self.path = path


class ContentStoreError(IdeaExplorerError):
    def __init__(self, operation: str, status: Optional[int] = None, cause: object = None) -> None:
        status_info = f" (status: {status})" if status else ""
        super().__init__(f"GitHub {operation} failed{status_info}: {cause}")
        self.operation = operation
        self.status = status


class GenerationFault(IdeaExplorerError):
    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Anthropic {operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class DeliveryFault(IdeaExplorerError):
    """Webhook delivery exhausted. Raised only by ``WebhookNotifier.send_or_raise``; ``send`` reports it in its result."""

    def __init__(self, url: str, attempts: int, last_status: Optional[int] = None) -> None:
        status_info = f" (last status: {last_status})" if last_status else ""
        super().__init__(f"Webhook delivery failed after {attempts} attempts{status_info}")
        self.url = url
        self.attempts = attempts
        self.last_status = last_status


class ValidationFault(IdeaExplorerError, ValueError):
    pass


class StepTimeout(IdeaExplorerError):
    def __init__(self, step: str, timeout_s: float) -> None:
        super().__init__(f"Step {step} timed out after {timeout_s}s")
        self.step = step
        self.timeout_s = timeout_s
