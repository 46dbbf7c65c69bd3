"""Settings validation helpers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def _checked(values: list[str], *, allow_empty: bool) -> list[str]:
    if not allow_empty and not values:
        raise ValueError("String list value must not be empty")
    return values


def parse_string_list(value: str | list[str], *, allow_empty: bool = False) -> list[str]:
    """Parse a list of strings given either as a list, a JSON array or a CSV string.

    Blank strings and malformed JSON raise ValueError, and so does an empty
    result unless ``allow_empty`` is set.
    """
    if isinstance(value, list):
        return _checked(value, allow_empty=allow_empty)

    stripped = value.strip()
    if not stripped:
        if allow_empty:
            return []
        raise ValueError("String list value must not be empty")

    if not stripped.startswith("["):
        return _checked([item.strip() for item in stripped.split(",") if item.strip()], allow_empty=allow_empty)

    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON array: {e}") from e
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ValueError("JSON value must be an array of strings")
    return _checked(parsed, allow_empty=allow_empty)


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env source that hands string-list fields to validators as raw strings.

    pydantic-settings JSON-decodes list fields read from the environment before
    validators run; CSV values would fail there. Fields named in
    ``string_list_fields`` skip that step so ``parse_string_list`` sees them.
    """

    string_list_fields: ClassVar[frozenset[str]] = frozenset({"cors_origins"})

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in self.string_list_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
