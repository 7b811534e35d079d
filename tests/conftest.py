import pytest

from fakes import FakeClock, FakeUserStore
from memory_manager import ConversationMemory, MemoryResolver
from stores import InMemoryStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def volatile(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def durable() -> FakeUserStore:
    return FakeUserStore()


@pytest.fixture
def resolver(volatile: InMemoryStore, durable: FakeUserStore) -> MemoryResolver:
    return MemoryResolver(volatile, durable)


@pytest.fixture
def conversations(volatile: InMemoryStore) -> ConversationMemory:
    return ConversationMemory(volatile)
