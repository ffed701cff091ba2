"""Exceptions raised by the dispatch layer."""

from __future__ import annotations


class DispatchError(Exception):
  """Base class for notification dispatch failures."""


class JobNotFoundError(DispatchError):
  """Raised when a notification id does not exist."""


class JobNotEnqueueableError(DispatchError):
  """Raised when a notification cannot move to the queued state."""

  def __init__(self, job_id: str, reason: str) -> None:
    super().__init__(f"Notification {job_id} cannot be queued: {reason}")
    self.job_id = job_id
    self.reason = reason


class JobInactiveError(JobNotEnqueueableError):
  """Raised when an inactive notification is asked to send."""

  def __init__(self, job_id: str) -> None:
    super().__init__(job_id, "notification is inactive")


class LeaseLostError(DispatchError):
  """Raised when a runner's claim on a job was taken over by another runner."""

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Notification {job_id} is no longer held by this runner")
    self.job_id = job_id
