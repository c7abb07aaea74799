"""
This module implements custom exceptions
"""

# Standard
from typing import Optional

## Base Error ##################################################################


class ImageCloneError(Exception):
    """Base class for all imageclone exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should terminate the
        reconciliation with an error that the driver backs off on
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class ImageCloneFatalError(ImageCloneError):
    """An ImageCloneFatalError terminates a reconciliation with an error. The
    driver is responsible for backing off and requeuing.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(ImageCloneFatalError):
    """Exception caused by invalid user-provided configuration"""


class CredentialResolutionError(ImageCloneFatalError):
    """Exception raised when pull credentials for an image cannot be read"""

    def __init__(self, message: str = "", image: Optional[str] = None):
        self.image = image
        super().__init__(message)


class MirrorCopyError(ImageCloneFatalError):
    """Exception raised when copying an image into the mirror fails"""

    def __init__(
        self,
        message: str = "",
        source: Optional[str] = None,
        destination: Optional[str] = None,
    ):
        self.source = source
        self.destination = destination
        super().__init__(message)


class StoreFetchError(ImageCloneFatalError):
    """Exception raised when a workload cannot be read for a reason other than
    it not existing
    """


class StoreUpdateError(ImageCloneFatalError):
    """Exception raised when a workload update fails for a reason other than a
    version conflict or the object being gone
    """


## Expected Errors #############################################################


class ImageCloneExpectedError(ImageCloneError):
    """An ImageCloneExpectedError is a steady-state condition that ends the
    current attempt but is not a failure
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class WorkloadNotFound(ImageCloneExpectedError):
    """The workload does not exist (anymore)"""


class VersionConflict(ImageCloneExpectedError):
    """The workload was changed by another writer since it was read"""


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating values from the library config or command line.
    """
    if not condition:
        raise ConfigError(message)
