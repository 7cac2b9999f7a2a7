"""Errors that carry a descriptive prefix in front of an underlying error."""

from __future__ import annotations


class CauseError(Exception):
    """An error whose message is a prefix followed by its inner error's message."""

    def __init__(self, prefix: str, inner: BaseException) -> None:
        super().__init__(prefix, inner)
        self.prefix = prefix
        self.inner = inner
        self.__cause__ = inner

    def __str__(self) -> str:
        return f"{self.prefix}{self.inner}"


def cause(prefix: str, err: BaseException) -> CauseError:
    """Wrap ``err`` so that its message is preceded by ``prefix``."""
    return CauseError(prefix, err)


def unwrap(err: BaseException) -> BaseException:
    """Follow the chain of wrapped errors down to the innermost one."""
    seen: set[int] = set()
    while True:
        inner = err.inner if isinstance(err, CauseError) else err.__cause__
        if inner is None or id(inner) in seen:
            return err
        seen.add(id(err))
        err = inner