import pytest

from conftest import load

from preview_operator.finalizer import FinalizerProtocol
from preview_operator.store import StoreError

TOKEN = "preview.homecareapp.xyz/finalizer"


@pytest.fixture
def protocol(store):
    return FinalizerProtocol(store, TOKEN)


def _namespace(name="previewalice-pr42"):
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def test_attach_persists_token(store, protocol, record):
    protocol.attach(load(store))
    assert load(store).has_finalizer(TOKEN)


def test_finalize_deletes_namespace_then_releases(store, protocol, record):
    protocol.attach(load(store))
    store.create(_namespace())
    store.delete("PreviewEnvironment", None, "homecare-pr42")
    store.reset_calls()

    assert protocol.finalize(load(store)) == "previewalice-pr42"
    verbs = [(c.verb, c.kind) for c in store.calls if c.verb != "get"]
    assert verbs == [("delete", "Namespace"), ("update", "PreviewEnvironment")]
    assert not store.contains("Namespace", None, "previewalice-pr42")
    assert not store.contains("PreviewEnvironment", None, "homecare-pr42")


def test_absent_namespace_counts_as_cleaned(store, protocol, record):
    protocol.attach(load(store))
    store.delete("PreviewEnvironment", None, "homecare-pr42")
    protocol.finalize(load(store))
    assert not store.contains("PreviewEnvironment", None, "homecare-pr42")


def test_token_kept_when_cleanup_fails(store, protocol, record):
    protocol.attach(load(store))
    store.create(_namespace())
    store.delete("PreviewEnvironment", None, "homecare-pr42")
    store.inject_failure("delete", "Namespace", StoreError("forbidden", status=403))

    with pytest.raises(StoreError):
        protocol.finalize(load(store))
    assert load(store).has_finalizer(TOKEN)
    assert store.count("update", "PreviewEnvironment") == 1


def test_uses_namespace_from_status(store, protocol, record):
    protocol.attach(load(store))
    current = store.get("PreviewEnvironment", None, "homecare-pr42")
    current["status"] = {"phase": "Ready", "namespace": "custom-ns"}
    store.update_status(current)
    store.create(_namespace("custom-ns"))

    assert protocol.cleanup_namespace(load(store)) == "custom-ns"
    assert not store.contains("Namespace", None, "custom-ns")
