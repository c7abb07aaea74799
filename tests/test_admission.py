"""
Tests for the namespace admission filter
"""

# Local
from imageclone.admission import AdmissionFilter
from imageclone.test_helpers.helpers import library_config


def test_default_excludes_kube_system():
    """Make sure the default configuration excludes kube-system only"""
    admission_filter = AdmissionFilter()
    assert not admission_filter.admit("kube-system")
    assert admission_filter.admit("default")
    assert admission_filter.admit("kube-public")


def test_explicit_exclusions():
    admission_filter = AdmissionFilter(["foo", "bar"])
    assert not admission_filter.admit("foo")
    assert not admission_filter.admit("bar")
    assert admission_filter.admit("kube-system")


def test_empty_exclusions_admit_everything():
    admission_filter = AdmissionFilter([])
    assert admission_filter.admit("kube-system")


def test_exclusions_from_config():
    """Make sure the filter reads the config at construction time"""
    with library_config(excluded_namespaces=["kube-system", "monitoring"]):
        admission_filter = AdmissionFilter()
    assert not admission_filter.admit("monitoring")
    assert "monitoring" in str(admission_filter)
