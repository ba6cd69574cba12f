"""
Outlier Engine Exceptions
"""


class InvalidSettingsError(ValueError):
    """Raised before processing when the configuration cannot be used."""
    pass


class CanceledExecutionError(Exception):
    """Raised when a running execution has been canceled by the caller."""

    def __init__(self, message: str = "Execution canceled"):
        super().__init__(message)


class OutlierWarning(UserWarning):
    """Advisory condition raised through the warnings module."""
    pass
