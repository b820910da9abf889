"""
Pydantic models for API request/response validation.

The request constraints mirror the PreviewEnvironment CRD schema, so bad input
is rejected here before it ever reaches the cluster.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from preview_operator.models import PreviewEnvironment


class PreviewUpsertRequest(BaseModel):
    """CI payload for a pull request push."""
    repoName: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=r"^[a-z0-9-]+$",
        description="Repository name (lowercase, alphanumeric with hyphens)",
        examples=["homecare"],
    )
    prNumber: int = Field(..., ge=1, description="Pull request number")
    branch: str = Field(..., min_length=1, max_length=255)
    commitSha: str = Field(..., pattern=r"^[a-f0-9]{7,40}$", description="Commit SHA to deploy")
    githubUsername: str = Field(
        ...,
        max_length=39,
        pattern=r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$",
        description="GitHub username of the PR author (lowercase)",
    )
    imageTag: str = Field(..., min_length=1, description="Container image reference to deploy")
    ttl: int = Field(default=24, ge=1, le=168, description="Lifetime in hours")

    @property
    def record_name(self) -> str:
        return f"{self.repoName}-pr{self.prNumber}"


class PreviewCondition(BaseModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    lastTransitionTime: Optional[datetime] = None


class PreviewResponse(BaseModel):
    """PreviewEnvironment details returned to CI and dashboards."""
    name: str
    repoName: str
    prNumber: int
    branch: str
    commitSha: str
    githubUsername: str
    imageTag: str
    ttl: Optional[int] = None
    phase: str = "Pending"
    namespace: Optional[str] = None
    environmentUrl: Optional[str] = None
    createdAt: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    message: Optional[str] = None
    deleting: bool = False
    conditions: List[PreviewCondition] = []

    @classmethod
    def from_record(cls, record: PreviewEnvironment) -> "PreviewResponse":
        spec, status = record.spec, record.status
        return cls(
            name=record.name,
            repoName=spec.repo_name,
            prNumber=spec.pr_number,
            branch=spec.branch,
            commitSha=spec.commit_sha,
            githubUsername=spec.github_username,
            imageTag=spec.image_tag,
            ttl=spec.ttl,
            phase=status.phase.value,
            namespace=status.namespace,
            environmentUrl=status.environment_url,
            createdAt=status.created_at,
            expiresAt=status.expires_at,
            message=status.message,
            deleting=record.deletion_requested,
            conditions=[PreviewCondition(**c.model_dump(by_alias=True)) for c in status.conditions],
        )


class PreviewListResponse(BaseModel):
    previews: List[PreviewResponse]
    total: int


class PreviewEvent(BaseModel):
    timestamp: str
    type: str
    message: str = ""
    phase: str = ""


class ErrorResponse(BaseModel):
    detail: str
    code: str = "UNKNOWN_ERROR"
