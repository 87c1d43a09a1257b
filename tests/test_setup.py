"""Test that the project setup is working correctly."""

import whale_observer


def test_version() -> None:
    """Test that version is defined."""
    assert whale_observer.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from whale_observer import alerter, detector, ingestor, storage

    # Just verify imports work
    assert ingestor is not None
    assert detector is not None
    assert alerter is not None
    assert storage is not None
