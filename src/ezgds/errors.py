from __future__ import annotations

from typing import Sequence


class GdsError(ValueError):
    """Base class for every fatal condition raised while reading or flattening."""


class GdsIOError(GdsError):
    pass


class MalformedRecord(GdsError):
    pass


class TruncatedPayload(MalformedRecord):
    pass


class TruncatedFile(MalformedRecord):
    pass


class TypeMismatch(GdsError):
    pass


class UnexpectedRecord(GdsError):
    def __init__(self, kind: str, state: str, detail: str | None = None) -> None:
        self.kind = kind
        self.state = state
        message = f"unexpected record {kind} in state {state}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class OrphanPropValue(GdsError):
    pass


class DanglingReference(GdsError):
    def __init__(self, structure: str, element_index: int, target: str) -> None:
        self.structure = structure
        self.element_index = element_index
        self.target = target
        super().__init__(
            f"structure {structure}, element {element_index}: "
            f"reference to unknown structure {target}"
        )


class CyclicReference(GdsError):
    def __init__(self, chain: Sequence[str]) -> None:
        self.chain = tuple(chain)
        super().__init__("cyclic structure reference: " + " -> ".join(self.chain))
