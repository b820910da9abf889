"""
Identity derivation for preview environments.

The namespace depends on author and PR only, so it survives new commits on
the same PR. The hostname also carries the short commit SHA; it is derived
once, persisted in status, and read back from there afterwards.
"""
from urllib.parse import urlparse

from .models import PreviewEnvironmentSpec

SHORT_SHA_LENGTH = 7


def short_sha(commit_sha: str) -> str:
    return commit_sha[:SHORT_SHA_LENGTH]


def derive_namespace(spec: PreviewEnvironmentSpec) -> str:
    return f"preview{spec.github_username.lower()}-pr{spec.pr_number}"


def derive_hostname(spec: PreviewEnvironmentSpec, domain_suffix: str) -> str:
    return f"{spec.github_username.lower()}{spec.pr_number}{short_sha(spec.commit_sha)}.{domain_suffix}"


def derive_url(spec: PreviewEnvironmentSpec, domain_suffix: str) -> str:
    return f"https://{derive_hostname(spec, domain_suffix)}"


def hostname_from_url(url: str) -> str:
    """Recover the hostname from a persisted environment URL."""
    return urlparse(url).hostname or url
