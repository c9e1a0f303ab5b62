import logging

import pytest

from tap_attend.directory import LocalDirectory, PersonRecord


@pytest.fixture(autouse=True)
def propagate_kiosk_logs(monkeypatch):
    # The kiosk logger does not propagate by default; caplog listens on root.
    monkeypatch.setattr(logging.getLogger("tap_attend"), "propagate", True)


@pytest.fixture
def alice() -> PersonRecord:
    return PersonRecord(person_id="2021-0001", display_name="Alice Reyes", credential_id="045A2E92", aliases=("17",))


@pytest.fixture
def bob() -> PersonRecord:
    return PersonRecord(person_id="2021-0002", display_name="Bob Santos", credential_id="A1B2C3D4E5F6")


@pytest.fixture
def directory(alice, bob) -> LocalDirectory:
    return LocalDirectory([alice, bob])
