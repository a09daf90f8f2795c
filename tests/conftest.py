# tests/conftest.py

from datetime import timedelta, timezone

import pytest

from reconciler import Reconciler

from .fakes import FakeAsana, FakeMirrorList


@pytest.fixture()
def utc_minus_6():
    return timezone(timedelta(hours=-6))


@pytest.fixture()
def calls():
    """Ordered log of every mutating call made against either fake service."""
    return []


@pytest.fixture()
def asana(calls):
    return FakeAsana(calls)


@pytest.fixture()
def mirror_list(calls):
    return FakeMirrorList(calls)


@pytest.fixture()
def reconciler(asana, mirror_list):
    return Reconciler(asana, mirror_list)
