"""
Error taxonomy for trigger intake, build execution and deployment.
"""

class PushpipeError(Exception):
    """Base class for all pushpipe errors."""

class Unauthorized(PushpipeError):
    """Trigger credential did not match; the request is rejected."""

class MalformedPayload(PushpipeError):
    """Trigger payload is missing required fields; the request is rejected."""

class JobConfigError(PushpipeError):
    """Raised when a job definition is invalid."""

class PreconditionError(PushpipeError):
    """Infrastructure failure before the first stage; the build is errored."""

class SecretNotFound(PreconditionError):
    """A credential handle could not be resolved by the secret store."""

class CheckoutError(PreconditionError):
    """The working tree could not be materialized."""

class TransportError(PushpipeError):
    """A deployment target could not be reached or written to."""
