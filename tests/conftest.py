import os
from datetime import datetime, timedelta, timezone

import pytest

# Must be set before intent_api is imported.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "")

from preview_operator.config import Settings
from preview_operator.models import ObjectMeta, PreviewEnvironment, PreviewEnvironmentSpec
from preview_operator.reconciler import PreviewEnvironmentReconciler
from preview_operator.registry import build_registry
from preview_operator.store import InMemoryObjectStore

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock shared by the store and the reconciler."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingPublisher:
    """Captures lifecycle events instead of writing them to Redis."""

    def __init__(self):
        self.events = []
        self.discarded = []

    def publish(self, name, event_type, message, phase=""):
        self.events.append((name, event_type, message, phase))

    def discard(self, name):
        self.discarded.append(name)

    def types(self, name=None):
        return [e[1] for e in self.events if name is None or e[0] == name]


def make_spec(**overrides) -> PreviewEnvironmentSpec:
    fields = dict(
        repo_name="homecare",
        pr_number=42,
        branch="feature/login",
        commit_sha="abcdef1234567890",
        github_username="alice",
        image_tag="registry.example.com/homecare:abcdef1",
    )
    fields.update(overrides)
    return PreviewEnvironmentSpec(**fields)


def make_record(name: str = "homecare-pr42", **spec_overrides) -> dict:
    record = PreviewEnvironment(metadata=ObjectMeta(name=name), spec=make_spec(**spec_overrides))
    body = record.to_object()
    body.pop("status")
    return body


@pytest.fixture
def settings():
    return Settings(REDIS_URL="")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(settings):
    return build_registry(settings.CRD_GROUP, settings.CRD_VERSION, settings.CRD_KIND, settings.CRD_PLURAL)


@pytest.fixture
def store(registry, clock):
    return InMemoryObjectStore(registry, clock=clock)


@pytest.fixture
def events():
    return RecordingPublisher()


@pytest.fixture
def reconciler(store, registry, settings, clock, events):
    return PreviewEnvironmentReconciler(store, registry, settings, clock=clock, events=events)


@pytest.fixture
def record(store):
    """A freshly submitted PreviewEnvironment (no finalizer, no status)."""
    return store.create(make_record())


def load(store, name: str = "homecare-pr42") -> PreviewEnvironment:
    return PreviewEnvironment.from_object(store.get("PreviewEnvironment", None, name))
