"""Scoring methods and their polarity."""

import enum

__all__ = ["MatchTemplateMethod"]


class MatchTemplateMethod(enum.Enum):
    """Formula used to score each template offset.

    Error metrics (SAE, SSE) score identical sub-images 0 and grow as the
    match worsens.  Similarity metrics (CC and the mean-subtracted variants)
    grow as the match improves.
    """

    SumOfAbsoluteErrors = "sae"
    SumOfSquaredErrors = "sse"
    CrossCorrelation = "cc"
    CCOEFF = "ccoeff"
    CCOEFF_NORMED = "ccoeff_normed"

    @property
    def is_error_metric(self) -> bool:
        """True when lower scores mean a better match."""
        return self in (MatchTemplateMethod.SumOfAbsoluteErrors,
                        MatchTemplateMethod.SumOfSquaredErrors)

    @property
    def is_raw(self) -> bool:
        """True for methods computed by a single correlation kernel."""
        return self not in (MatchTemplateMethod.CCOEFF,
                            MatchTemplateMethod.CCOEFF_NORMED)

    @property
    def is_normalized(self) -> bool:
        return self is MatchTemplateMethod.CCOEFF_NORMED

    def is_better(self, a: float, b: float) -> bool:
        """Return True if score ``a`` is strictly better than ``b``.

        NaN never compares better than anything.
        """
        if self.is_error_metric:
            return a < b
        return a > b

    def accepts(self, value: float, threshold: float) -> bool:
        """Return True if ``value`` passes ``threshold`` under this polarity."""
        if self.is_error_metric:
            return value < threshold
        return value > threshold
