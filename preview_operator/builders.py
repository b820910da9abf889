"""
Desired-state builders for the four child resources of a PreviewEnvironment.

Every builder is a pure function of (spec, namespace, hostname, options) and
returns a full manifest dict. Two calls with the same input return equal
dicts, which is what the convergence driver diffs against.

Re-sync contract:
  - Deployment: the container image is kept in sync for the record's lifetime
    (it changes with every new commit pushed to the PR).
  - Namespace labels, Service spec, Ingress rules/annotations: written once at
    creation and never reverted. Manual edits to them are left alone.
"""
import copy
from dataclasses import dataclass
from typing import Any

from .models import PreviewEnvironmentSpec

APP_NAME = "preview-app"
SERVICE_PORT = 80
MANAGED_BY = "preview-operator"
LABEL_PREFIX = "preview.homecareapp.xyz"

RESOURCE_REQUESTS = {"cpu": "50m", "memory": "32Mi"}
RESOURCE_LIMITS = {"cpu": "100m", "memory": "64Mi"}

LIVENESS_INITIAL_DELAY = 30
LIVENESS_PERIOD = 10
READINESS_INITIAL_DELAY = 5
READINESS_PERIOD = 5


@dataclass(frozen=True)
class BuildOptions:
    app_port: int = 3000
    ingress_class: str = "nginx"


def _preview_labels(spec: PreviewEnvironmentSpec) -> dict[str, str]:
    return {
        f"{LABEL_PREFIX}/repo": spec.repo_name,
        f"{LABEL_PREFIX}/pr": str(spec.pr_number),
    }


def _app_labels(spec: PreviewEnvironmentSpec) -> dict[str, str]:
    return {"app": APP_NAME, **_preview_labels(spec)}


def _http_probe(port: int, initial_delay: int, period: int) -> dict[str, Any]:
    return {
        "httpGet": {"path": "/", "port": port},
        "initialDelaySeconds": initial_delay,
        "periodSeconds": period,
    }


def build_namespace(spec: PreviewEnvironmentSpec, namespace: str, hostname: str,
                    options: BuildOptions) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": namespace,
            "labels": {
                "app.kubernetes.io/name": "homecare-preview",
                "app.kubernetes.io/instance": f"pr-{spec.pr_number}",
                "app.kubernetes.io/managed-by": MANAGED_BY,
                **_preview_labels(spec),
                f"{LABEL_PREFIX}/user": spec.github_username.lower(),
            },
        },
    }


def build_deployment(spec: PreviewEnvironmentSpec, namespace: str, hostname: str,
                     options: BuildOptions) -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": APP_NAME,
            "namespace": namespace,
            "labels": _app_labels(spec),
        },
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"app": APP_NAME}},
            "template": {
                "metadata": {"labels": _app_labels(spec)},
                "spec": {
                    "containers": [
                        {
                            "name": APP_NAME,
                            "image": spec.image_tag,
                            "ports": [{"containerPort": options.app_port, "protocol": "TCP"}],
                            "resources": {
                                "requests": dict(RESOURCE_REQUESTS),
                                "limits": dict(RESOURCE_LIMITS),
                            },
                            "livenessProbe": _http_probe(
                                options.app_port, LIVENESS_INITIAL_DELAY, LIVENESS_PERIOD),
                            "readinessProbe": _http_probe(
                                options.app_port, READINESS_INITIAL_DELAY, READINESS_PERIOD),
                        }
                    ],
                },
            },
        },
    }


def build_service(spec: PreviewEnvironmentSpec, namespace: str, hostname: str,
                  options: BuildOptions) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": APP_NAME,
            "namespace": namespace,
            "labels": _app_labels(spec),
        },
        "spec": {
            "type": "ClusterIP",
            "selector": {"app": APP_NAME},
            "ports": [
                {
                    "name": "http",
                    "port": SERVICE_PORT,
                    "targetPort": options.app_port,
                    "protocol": "TCP",
                }
            ],
        },
    }


def build_ingress(spec: PreviewEnvironmentSpec, namespace: str, hostname: str,
                  options: BuildOptions) -> dict[str, Any]:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": APP_NAME,
            "namespace": namespace,
            "labels": _app_labels(spec),
            "annotations": {"nginx.ingress.kubernetes.io/rewrite-target": "/"},
        },
        "spec": {
            "ingressClassName": options.ingress_class,
            "rules": [
                {
                    "host": hostname,
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {
                                        "name": APP_NAME,
                                        "port": {"number": SERVICE_PORT},
                                    }
                                },
                            }
                        ]
                    },
                }
            ],
        },
    }


def container_image(deployment: dict[str, Any]) -> str:
    """Image of the first container in a Deployment manifest ('' if absent)."""
    containers = (
        deployment.get("spec", {}).get("template", {}).get("spec", {}).get("containers") or []
    )
    return containers[0].get("image", "") if containers else ""


def sync_container_image(current: dict[str, Any], target: dict[str, Any]) -> bool:
    """Copy the target image onto ``current`` in place. Returns True if it changed."""
    wanted = container_image(target)
    if container_image(current) == wanted:
        return False
    pod_spec = current.setdefault("spec", {}).setdefault("template", {}).setdefault("spec", {})
    if pod_spec.get("containers"):
        pod_spec["containers"][0]["image"] = wanted
    else:
        pod_spec["containers"] = copy.deepcopy(target["spec"]["template"]["spec"]["containers"])
    return True
