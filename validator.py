from typing import Any, Iterable

class Validator:
    """Collects field-level validation failures, keyed by field name."""

    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    def valid(self) -> bool:
        return not self.errors

    def add_error(self, key: str, message: str) -> None:
        # First failure per field wins.
        self.errors.setdefault(key, message)

    def check(self, ok: bool, key: str, message: str) -> None:
        if not ok:
            self.add_error(key, message)

def permitted_value(value: Any, *permitted: Any) -> bool:
    return value in permitted


def unique(values: Iterable[Any]) -> bool:
    items = list(values)
    return len(set(items)) == len(items)
