"""Exception types raised by libtmatch.

Each error also derives from the builtin exception normally raised for the
same condition, so ``except ValueError`` style handlers keep working.
"""

__all__ = [
    "MatchError",
    "ConstructionError",
    "DimensionMismatch",
    "TemplateTooLarge",
    "OutOfBounds",
    "UnsupportedMethod",
    "NoCandidates",
]


class MatchError(Exception):
    """Base class for all libtmatch errors."""


class ConstructionError(MatchError, RuntimeError):
    """No usable compute device could be acquired for a GPU session."""


class DimensionMismatch(MatchError, ValueError):
    """Buffer dimensions are inconsistent with the requested operation."""


class TemplateTooLarge(DimensionMismatch):
    """The template does not fit inside the input image."""

    def __init__(self, input_size, template_size):
        self.input_size = tuple(input_size)
        self.template_size = tuple(template_size)
        super().__init__(
            f"Template {self.template_size[0]}x{self.template_size[1]} is larger "
            f"than input {self.input_size[0]}x{self.input_size[1]}"
        )


class OutOfBounds(MatchError, IndexError):
    """A rectangle query reaches outside a summed-area table."""


class UnsupportedMethod(MatchError, ValueError):
    """The requested method has no kernel path in this backend."""

    def __init__(self, method, backend: str = ""):
        self.method = method
        where = f" in {backend}" if backend else ""
        super().__init__(f"No kernel for method {method!r}{where}")


class NoCandidates(MatchError, ValueError):
    """Classification was requested over an empty candidate set."""
