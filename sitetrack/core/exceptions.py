"""
Engine-wide exception hierarchy.

Services raise these for hard failures only. Guarded state transitions never
raise: they return ``(ok, reason)`` and leave the decision to the caller.
Blueprints register handlers against these types once and get consistent
HTTP status codes everywhere.

Usage:
    from sitetrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkItem", resource_id=42)
    raise ValidationError("parent would create a cycle", details={"parent_id": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given project.

    Args:
        resource: Human-readable model name (e.g. "WorkItem", "AcceptanceStage").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        project_id: Optional project scope that was enforced.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        project_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.project_id = project_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if project_id is not None:
            msg += f" (project={project_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a data-integrity rule.

    Examples: circular work-item parentage, a parent in another project,
    an attempt to write a system-owned field through the edit path.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique key.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class ImmutableRecordError(Exception):
    """Raised at flush time when an append-only row is updated or deleted."""

    def __init__(self, entity: str, entity_id: int | None, operation: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(f"{entity} id={entity_id} is append-only; {operation} refused")
