"""Run django-fsm transitions with the domain error format."""

from __future__ import annotations

from typing import TYPE_CHECKING

from django_fsm import TransitionNotAllowed

from settlement.exceptions import InvalidStateTransitionError

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import Model


def apply_transition(instance: Model, name: str, *args: Any, **kwargs: Any) -> None:
    """
    Call ``instance.<name>(...)``, converting TransitionNotAllowed.

    Raises:
        InvalidStateTransitionError: The current state has no such edge
    """
    try:
        getattr(instance, name)(*args, **kwargs)
    except TransitionNotAllowed:
        model_name = instance.__class__.__name__
        raise InvalidStateTransitionError(
            f"Cannot {name.replace('_', ' ')} {model_name.lower()} in state '{instance.status}'",
            details={
                "model": model_name,
                "id": str(instance.pk),
                "current_state": instance.status,
                "transition": name,
            },
        )
