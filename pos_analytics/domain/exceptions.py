"""Domain-specific exceptions

Data-quality problems never raise; they come back as DataQualityWarning values.
These exceptions signal programmer errors that must fail the call outright.
"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidGroupingError(DomainException, ValueError):
    """Grouping selector is not a known Dimension"""

    pass


class InvalidDateWindowError(DomainException, ValueError):
    """Date window is inverted or not made of dates"""

    pass


class CreditNotFoundError(DomainException, KeyError):
    """Payment targets a credit id that is not in the loaded dataset"""

    pass
