"""Model lifecycle hooks.

Hooks are registered explicitly: either on the model class (``_s_hooks``) or
when the model is exposed (``api.expose_object(Model, hooks=MyHooks)``).

A ``before_*`` hook may return an :class:`~safcrud.response.ApiResponse`, the
operation is then aborted (rolled back) and the response is returned as is.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import safcrud
from .response import ApiResponse


@dataclass
class HookContext:
    """Passed to every hook"""

    descriptor: Any
    session: Any
    action: str
    params: Any = None


class ModelHooks:
    """
    Subclass and override the methods you need, the default implementations do nothing
    """

    def before_create(self, payload: Dict[str, Any], context: HookContext) -> Optional[ApiResponse]:
        """The payload may be modified in place"""
        return None

    def after_create(self, instance: Any, payload: Dict[str, Any], context: HookContext) -> None:
        return None

    def before_update(self, instance: Any, payload: Dict[str, Any], context: HookContext) -> Optional[ApiResponse]:
        return None

    def after_update(self, instance: Any, payload: Dict[str, Any], context: HookContext) -> None:
        return None

    def before_delete(self, instance: Any, context: HookContext) -> Optional[ApiResponse]:
        return None

    def after_delete(self, instance: Any, context: HookContext) -> None:
        return None


def get_hooks(model, override: Any = None) -> Optional[ModelHooks]:
    """
    :param model: model class
    :param override: ModelHooks subclass or instance passed at expose time
    :return: ModelHooks instance or None
    """
    hooks = override if override is not None else getattr(model, "_s_hooks", None)
    if hooks is None:
        return None
    if isinstance(hooks, type):
        hooks = hooks()
    if not isinstance(hooks, ModelHooks):
        raise TypeError(f"{model.__name__} hooks should be a ModelHooks subclass, not {type(hooks)}")
    return hooks


def run_hook(hooks: Optional[ModelHooks], hook_name: str, *args) -> Optional[ApiResponse]:
    """
    Call the hook if it exists
    :return: the short-circuit response of a before_* hook, None otherwise
    """
    if hooks is None:
        return None
    hook = getattr(hooks, hook_name)
    safcrud.log.debug(f"Running hook {type(hooks).__name__}.{hook_name}")
    result = hook(*args)
    if result is not None and not isinstance(result, ApiResponse):
        raise TypeError(f"{type(hooks).__name__}.{hook_name} should return an ApiResponse or None")
    return result
