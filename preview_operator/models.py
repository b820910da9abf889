"""
Pydantic models for the PreviewEnvironment custom resource.

Field names are snake_case in Python and camelCase on the wire, matching the
CRD schema in deploy/crd.yaml. Unknown metadata keys (managedFields, labels,
annotations, ...) are kept so a record can be written back without loss.
"""
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Resource(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Phase(str, Enum):
    PENDING = "Pending"
    CREATING = "Creating"
    READY = "Ready"
    EXPIRING = "Expiring"
    FAILED = "Failed"


class PreviewEnvironmentSpec(_Resource):
    """Desired state, supplied by CI. Validated upstream by the CRD schema."""
    repo_name: str
    pr_number: int
    branch: str
    commit_sha: str
    github_username: str
    image_tag: str
    ttl: Optional[int] = None


class Condition(_Resource):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None


class PreviewEnvironmentStatus(_Resource):
    """Observed state, written only by the operator."""
    phase: Phase = Phase.PENDING
    namespace: Optional[str] = None
    environment_url: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)

    @property
    def initialized(self) -> bool:
        return bool(
            self.namespace and self.environment_url
            and self.created_at and self.expires_at
        )


class ObjectMeta(_Resource):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None
    deletion_timestamp: Optional[datetime] = None
    finalizers: List[str] = Field(default_factory=list)


class PreviewEnvironment(_Resource):
    """Parent record: desired state + observed state + deletion bookkeeping."""
    api_version: str = "preview.homecareapp.xyz/v1"
    kind: str = "PreviewEnvironment"
    metadata: ObjectMeta
    spec: PreviewEnvironmentSpec
    status: PreviewEnvironmentStatus = Field(default_factory=PreviewEnvironmentStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, token: str) -> bool:
        return token in self.metadata.finalizers

    @classmethod
    def from_object(cls, obj: dict) -> "PreviewEnvironment":
        return cls.model_validate(obj)

    def to_object(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
