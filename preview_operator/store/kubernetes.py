"""
Kubernetes-backed object store.

Routes (kind, namespace, name) to the typed client APIs for the built-in child
kinds and to CustomObjectsApi for the PreviewEnvironment CRD. Typed responses
are turned into plain dicts, and ApiException status codes are translated to
the store's domain errors (404 → NotFoundError, 409 → ConflictError).
"""
import logging
from typing import Any, Callable, Optional

from kubernetes import client, config
from kubernetes.client import ApiException

from ..config import Settings, settings as default_settings
from ..registry import ResourceRegistry
from .base import ConflictError, NotFoundError, StoreError, describe, object_key

logger = logging.getLogger("preview-operator.store")

_k8s_loaded = False


def _ensure_k8s(cfg: Settings):
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if cfg.IN_CLUSTER:
        config.load_incluster_config()
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config(config_file=cfg.KUBECONFIG or None)
    _k8s_loaded = True


def _translate(exc: ApiException, what: str) -> StoreError:
    if exc.status == 404:
        return NotFoundError(f"{what} not found")
    if exc.status == 409:
        return ConflictError(f"{what}: {exc.reason}")
    return StoreError(f"{what}: {exc.status} {exc.reason}", status=exc.status)


class KubernetesObjectStore:
    def __init__(self, registry: ResourceRegistry, api_client: Optional[client.ApiClient] = None,
                 cfg: Settings = default_settings):
        if api_client is None:
            _ensure_k8s(cfg)
            api_client = client.ApiClient()
        self.registry = registry
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.networking = client.NetworkingV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    # ------------------------------------------------------------------
    # Routing table
    # ------------------------------------------------------------------

    def _routes(self, kind: str) -> dict[str, Callable]:
        if kind == "Namespace":
            return {
                "get": lambda ns, name: self.core.read_namespace(name),
                "list": lambda ns: self.core.list_namespace(),
                "create": lambda ns, body: self.core.create_namespace(body),
                "update": lambda ns, name, body: self.core.replace_namespace(name, body),
                "delete": lambda ns, name: self.core.delete_namespace(name),
            }
        if kind == "Deployment":
            return {
                "get": lambda ns, name: self.apps.read_namespaced_deployment(name, ns),
                "list": lambda ns: (self.apps.list_namespaced_deployment(ns) if ns
                                   else self.apps.list_deployment_for_all_namespaces()),
                "create": lambda ns, body: self.apps.create_namespaced_deployment(ns, body),
                "update": lambda ns, name, body: self.apps.replace_namespaced_deployment(name, ns, body),
                "delete": lambda ns, name: self.apps.delete_namespaced_deployment(name, ns),
            }
        if kind == "Service":
            return {
                "get": lambda ns, name: self.core.read_namespaced_service(name, ns),
                "list": lambda ns: (self.core.list_namespaced_service(ns) if ns
                                   else self.core.list_service_for_all_namespaces()),
                "create": lambda ns, body: self.core.create_namespaced_service(ns, body),
                "update": lambda ns, name, body: self.core.replace_namespaced_service(name, ns, body),
                "delete": lambda ns, name: self.core.delete_namespaced_service(name, ns),
            }
        if kind == "Ingress":
            return {
                "get": lambda ns, name: self.networking.read_namespaced_ingress(name, ns),
                "list": lambda ns: (self.networking.list_namespaced_ingress(ns) if ns
                                   else self.networking.list_ingress_for_all_namespaces()),
                "create": lambda ns, body: self.networking.create_namespaced_ingress(ns, body),
                "update": lambda ns, name, body: self.networking.replace_namespaced_ingress(name, ns, body),
                "delete": lambda ns, name: self.networking.delete_namespaced_ingress(name, ns),
            }

        rt = self.registry.get(kind)
        return {
            "get": lambda ns, name: self.custom.get_cluster_custom_object(
                rt.group, rt.version, rt.plural, name),
            "list": lambda ns: self.custom.list_cluster_custom_object(rt.group, rt.version, rt.plural),
            "create": lambda ns, body: self.custom.create_cluster_custom_object(
                rt.group, rt.version, rt.plural, body),
            "update": lambda ns, name, body: self.custom.replace_cluster_custom_object(
                rt.group, rt.version, rt.plural, name, body),
            "update_status": lambda ns, name, body: self.custom.replace_cluster_custom_object_status(
                rt.group, rt.version, rt.plural, name, body),
            "delete": lambda ns, name: self.custom.delete_cluster_custom_object(
                rt.group, rt.version, rt.plural, name),
        }

    def _call(self, verb: str, kind: str, namespace: Optional[str], name: str, *args) -> Any:
        rt = self.registry.get(kind)
        ns = namespace if rt.namespaced else None
        route = self._routes(kind).get(verb)
        what = describe(kind, ns, name)
        if route is None:
            raise StoreError(f"{verb} is not supported for {kind}")
        try:
            result = route(ns, *args)
        except ApiException as e:
            raise _translate(e, what) from e
        logger.debug(f"k8s> {verb} {what}")
        return result

    def _to_dict(self, kind: str, obj: Any) -> dict[str, Any]:
        data = obj if isinstance(obj, dict) else self.api_client.sanitize_for_serialization(obj)
        rt = self.registry.get(kind)
        # Typed read responses leave apiVersion/kind empty.
        data.setdefault("apiVersion", rt.api_version)
        data.setdefault("kind", rt.kind)
        return data

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------

    def get(self, kind: str, namespace: Optional[str], name: str) -> dict[str, Any]:
        return self._to_dict(kind, self._call("get", kind, namespace, name, name))

    def list(self, kind: str, namespace: Optional[str] = None) -> list[dict[str, Any]]:
        result = self._call("list", kind, namespace, "*")
        items = result.get("items", []) if isinstance(result, dict) else result.items
        return [self._to_dict(kind, item) for item in items]

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = object_key(obj)
        return self._to_dict(kind, self._call("create", kind, namespace, name, obj))

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = object_key(obj)
        return self._to_dict(kind, self._call("update", kind, namespace, name, name, obj))

    def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = object_key(obj)
        return self._to_dict(kind, self._call("update_status", kind, namespace, name, name, obj))

    def delete(self, kind: str, namespace: Optional[str], name: str) -> None:
        self._call("delete", kind, namespace, name, name)
