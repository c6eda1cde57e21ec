"""Profile autofill for TYPE actions."""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping

from .models import Action, ActionType

PROFILE_KEY = "uwa_user_profile"
AUTO_FILL_KEY = "uwa_auto_fill_forms"


def profile_value_for(action: Action, profile: Mapping[str, Any]) -> Any:
    hint = f"{action.label or ''}{action.selector or ''}{action.name or ''}".lower()
    if "email" in hint:
        return profile.get("email")
    if "name" in hint or "username" in hint:
        return profile.get("name")
    if "phone" in hint or "tel" in hint:
        return profile.get("phone")
    return None


def inject_profile(actions: Iterable[Action], profile: Mapping[str, Any]) -> List[Action]:
    """New TYPE actions with profile values where a field hint matches; others untouched."""
    filled: List[Action] = []
    for action in actions:
        if action.type is ActionType.TYPE:
            value = profile_value_for(action, profile)
            if value:
                action = action.model_copy(update={"value": str(value)})
        filled.append(action)
    return filled


def replace_type_actions(actions: List[Action], selected: Iterable[Action]) -> List[Action]:
    """
    Swap the TYPE actions for the operator's selection, keeping the selection
    at the position of the first TYPE action. An empty selection drops them.
    """
    chosen = [a for a in selected if a.type is ActionType.TYPE]
    result: List[Action] = []
    inserted = False
    for action in actions:
        if action.type is ActionType.TYPE:
            if not inserted:
                result.extend(chosen)
                inserted = True
            continue
        result.append(action)
    return result
