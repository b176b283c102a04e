"""Exceptions and warnings raised by the registration pipeline."""


class ConfigurationError(ValueError):
    """Invalid optimizer parameters or input clouds, raised before any work starts."""


class RegistrationError(RuntimeError):
    """A numerical step failed and the registration run was aborted."""


class NotComputedWarning(UserWarning):
    """A result was requested before a successful call to ``run()``."""
