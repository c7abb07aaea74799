"""
Test the custom exceptions and assert functions
"""

# Third Party
import pytest

# Local
from imageclone import exceptions


def test_assert_config_pass():
    """Make sure that no exception is throw by assert_config when it
    passes
    """
    exceptions.assert_config(True)


def test_assert_config_fail():
    """Make sure the right exception is thrown by assert_config when it
    fails
    """
    exception_msg = "error mesage"
    with pytest.raises(exceptions.ConfigError, match=exception_msg):
        exceptions.assert_config(False, exception_msg)


@pytest.mark.parametrize(
    "error",
    [
        exceptions.ConfigError("config"),
        exceptions.CredentialResolutionError("creds", image="nginx"),
        exceptions.MirrorCopyError("copy", source="a", destination="b"),
        exceptions.StoreFetchError("fetch"),
        exceptions.StoreUpdateError("update"),
    ],
)
def test_fatal_errors(error):
    assert error.is_fatal_error
    assert isinstance(error, exceptions.ImageCloneFatalError)


@pytest.mark.parametrize(
    "error",
    [exceptions.WorkloadNotFound("gone"), exceptions.VersionConflict("stale")],
)
def test_expected_errors(error):
    assert not error.is_fatal_error
    assert isinstance(error, exceptions.ImageCloneExpectedError)


def test_error_context():
    error = exceptions.MirrorCopyError("copy failed", source="a", destination="b")
    assert str(error) == "copy failed"
    assert (error.source, error.destination) == ("a", "b")
