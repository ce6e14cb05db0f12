import itertools

import pytest

from copyright_registry.core.registry import CopyrightRegistry, MismatchPolicy
from copyright_registry.services.events import EventLog
from copyright_registry.services.fhe import MockFHEBackend

OWNER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"
REGISTRY_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
ALICE = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
BOB = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
CHARLIE = "0x90f79bf6eb2c4f870365e785982e1f101e93b906"


@pytest.fixture
def backend():
    return MockFHEBackend()


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def clock():
    ticks = itertools.count(1_700_000_000)
    return lambda: next(ticks)


@pytest.fixture
def registry(backend, event_log, clock):
    return CopyrightRegistry(
        owner=OWNER,
        address=REGISTRY_ADDRESS,
        backend=backend,
        event_log=event_log,
        mismatch_policy=MismatchPolicy.REGISTRANT,
        clock=clock,
    )


@pytest.fixture
def authors(registry):
    registry.register_author(ALICE, 111111)
    registry.register_author(BOB, 222222)
    return registry
