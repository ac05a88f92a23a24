# src/kanban_sync/tasks/task_errors.py

from __future__ import annotations

from enum import StrEnum


class TaskOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SUBSCRIBE = "subscribe"


class TaskSyncError(Exception):
    """
    Typed mutation/query failure.

    retryable: the caller may try again (after backoff for ResourceExhausted).
    fatal: False for informational outcomes (e.g. task already removed).
    """

    code = "unknown"
    retryable = False
    fatal = True

    def __init__(
        self,
        user_message: str,
        *,
        operation: TaskOperation,
        task_id: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.operation = operation
        self.task_id = task_id
        self.cause = cause


class PermissionDeniedError(TaskSyncError):
    code = "permission-denied"


class NotFoundError(TaskSyncError):
    code = "not-found"
    fatal = False


class UnavailableError(TaskSyncError):
    code = "unavailable"
    retryable = True


class ResourceExhaustedError(TaskSyncError):
    code = "resource-exhausted"
    retryable = True


class UnknownStoreError(TaskSyncError):
    code = "unknown"


_ERROR_TYPES: dict[str, type[TaskSyncError]] = {
    PermissionDeniedError.code: PermissionDeniedError,
    NotFoundError.code: NotFoundError,
    UnavailableError.code: UnavailableError,
    ResourceExhaustedError.code: ResourceExhaustedError,
}

_OFFLINE = "Sin conexión. Verifica tu red e intenta nuevamente"
_QUOTA = "Límite de operaciones excedido. Intenta más tarde"

_MESSAGES: dict[tuple[str, TaskOperation], str] = {
    ("permission-denied", TaskOperation.CREATE): "No tienes permisos para crear tareas",
    ("permission-denied", TaskOperation.UPDATE): "No tienes permisos para modificar esta tarea",
    ("permission-denied", TaskOperation.DELETE): "No tienes permisos para eliminar esta tarea",
    ("permission-denied", TaskOperation.SUBSCRIBE): "No tienes permisos para ver estas tareas",
    ("not-found", TaskOperation.CREATE): "La colección de tareas no existe",
    ("not-found", TaskOperation.UPDATE): "La tarea no existe o fue eliminada",
    ("not-found", TaskOperation.DELETE): "La tarea no existe o ya fue eliminada",
    ("not-found", TaskOperation.SUBSCRIBE): "La colección de tareas no existe",
}

_UNKNOWN_PREFIX = {
    TaskOperation.CREATE: "Error al crear tarea",
    TaskOperation.UPDATE: "Error al actualizar",
    TaskOperation.DELETE: "Error al eliminar",
    TaskOperation.SUBSCRIBE: "Error al cargar tareas",
}


def user_message_for(code: str, operation: TaskOperation, detail: str = "") -> str:
    if code == "unavailable":
        return _OFFLINE
    if code == "resource-exhausted":
        return _QUOTA
    msg = _MESSAGES.get((code, operation))
    if msg is not None:
        return msg
    return f"{_UNKNOWN_PREFIX[operation]}: {detail}" if detail else _UNKNOWN_PREFIX[operation]


def classify_error(
    exc: BaseException,
    operation: TaskOperation,
    *,
    task_id: str | None = None,
) -> TaskSyncError:
    """Map any store-side exception to the typed taxonomy."""
    if isinstance(exc, TaskSyncError):
        return exc

    # StoreError carries the code; other backends may expose one under the same name.
    raw = getattr(exc, "code", None)
    code = raw if isinstance(raw, str) else "unknown"

    cls = _ERROR_TYPES.get(code, UnknownStoreError)
    detail = getattr(exc, "message", None) or str(exc)
    return cls(
        user_message_for(cls.code, operation, detail),
        operation=operation,
        task_id=task_id,
        cause=exc,
    )
