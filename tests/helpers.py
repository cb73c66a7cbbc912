"""Validator helpers shared across test modules."""


def min_length(n):
    """Sync field validator: ``"min length n"`` for shorter values."""

    def validator(value, field):
        if len(value or "") < n:
            return f"min length {n}"
        return None

    return validator


def make_recorder(log):
    """Field validator that records which field ran and never errors."""

    def validator(value, field):
        log.append(field.name)
        return None

    return validator
