"""Tests for the package entry points."""

from __future__ import annotations

import serverwatch
from serverwatch.app import main
from serverwatch.main import Serverwatch


def test_public_api() -> None:
    assert serverwatch.main is main
    assert serverwatch.Serverwatch is Serverwatch
    assert isinstance(serverwatch.__version__, str)
