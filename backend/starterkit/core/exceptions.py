"""Setup-specific exceptions for the environment gate."""


class SetupError(Exception):
    """Base exception for setup wizard operations."""

    pass


class EnvTemplateMissingError(SetupError):
    """Raised when the env file is missing and no template exists to seed it."""

    pass


class EnvFileWriteError(SetupError):
    """Raised when the env file cannot be read, seeded or written."""

    pass


class UnsupportedDriverError(SetupError):
    """Raised when a submitted database driver is not one we can configure."""

    def __init__(self, driver: str):
        super().__init__(f"Unsupported database driver '{driver}'")
        self.driver = driver


class InvalidConnectionFieldError(SetupError):
    """Raised when a submitted host or port cannot be stored safely."""

    def __init__(self, field: str):
        super().__init__(f"Invalid database {field}")
        self.field = field
