from typing import List, Protocol, Tuple, runtime_checkable


@runtime_checkable
class Document(Protocol):
    """
    The mutable buffer the engine writes through.
    Positions are 0-based character offsets into the value at call time.
    """

    def get_value(self) -> str: ...

    def set_value(self, text: str) -> None: ...

    def insert_text(self, position: int, text: str) -> None: ...

    def delete_text(self, position: int, length: int) -> None: ...

    def replace_range(self, text: str, start: int, end: int) -> None: ...


class TextBuffer:
    """In-memory Document. Keeps a log of mutation calls for inspection."""

    def __init__(self, text: str = ""):
        self._value = text
        self.mutations: List[Tuple] = []

    def _check_range(self, start: int, end: int):
        if start < 0 or end < start or end > len(self._value):
            raise ValueError(f"Range [{start}:{end}] outside document of length {len(self._value)}")

    def get_value(self) -> str:
        return self._value

    def set_value(self, text: str) -> None:
        self.mutations.append(("set_value", len(text)))
        self._value = text

    def insert_text(self, position: int, text: str) -> None:
        self._check_range(position, position)
        self.mutations.append(("insert_text", position, text))
        self._value = self._value[:position] + text + self._value[position:]

    def delete_text(self, position: int, length: int) -> None:
        self._check_range(position, position + length)
        self.mutations.append(("delete_text", position, length))
        self._value = self._value[:position] + self._value[position + length :]

    def replace_range(self, text: str, start: int, end: int) -> None:
        self._check_range(start, end)
        self.mutations.append(("replace_range", start, end, text))
        self._value = self._value[:start] + text + self._value[end:]

    def __str__(self) -> str:
        return self._value
