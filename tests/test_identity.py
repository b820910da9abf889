from conftest import make_spec

from preview_operator.identity import (
    derive_hostname, derive_namespace, derive_url, hostname_from_url, short_sha,
)


def test_namespace_from_author_and_pr():
    assert derive_namespace(make_spec()) == "previewalice-pr42"


def test_namespace_stable_across_commits():
    first = make_spec(commit_sha="1111111aaaa", image_tag="app:1111111")
    second = make_spec(commit_sha="2222222bbbb", image_tag="app:2222222")
    assert derive_namespace(first) == derive_namespace(second)


def test_url_carries_short_sha():
    spec = make_spec(commit_sha="abcdef1234567890")
    assert derive_hostname(spec, "dev.homecareapp.xyz") == "alice42abcdef1.dev.homecareapp.xyz"
    assert derive_url(spec, "dev.homecareapp.xyz") == "https://alice42abcdef1.dev.homecareapp.xyz"


def test_url_changes_with_commit():
    assert derive_url(make_spec(commit_sha="1111111"), "d") != derive_url(make_spec(commit_sha="2222222"), "d")


def test_short_sha_keeps_short_input():
    assert short_sha("abc1234") == "abc1234"
    assert short_sha("abc1234def") == "abc1234"


def test_hostname_round_trips_from_url():
    assert hostname_from_url("https://alice42abcdef1.dev.homecareapp.xyz") == "alice42abcdef1.dev.homecareapp.xyz"


def test_six_char_sha_kept_whole():
    assert short_sha("abc123") == "abc123"
    spec = make_spec(commit_sha="abc123")
    assert derive_hostname(spec, "dev.homecareapp.xyz") == "alice42abc123.dev.homecareapp.xyz"


def test_namespace_ignores_branch_and_ttl():
    base = derive_namespace(make_spec())
    assert derive_namespace(make_spec(branch="hotfix/other")) == base
    assert derive_namespace(make_spec(ttl=168)) == base
    assert derive_namespace(make_spec(ttl=1, branch="main")) == base
