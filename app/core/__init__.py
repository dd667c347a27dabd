"""
Core Application - Infrastructure & Base Classes

Shared building blocks for the domain apps (settlement, notifications):

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking via an auto-incremented version
    - AppendOnlyMixin: Rows that may be inserted but never changed or deleted

Services (import from core.services):
    - BaseService: Logger and transaction helpers for service classes
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError and its subclasses, each carrying an HTTP status
"""
