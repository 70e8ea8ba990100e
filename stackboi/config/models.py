"""Pydantic models for config types."""

from typing import List, Optional, Set
from pydantic import BaseModel, Field, field_validator, model_validator

class Stack(BaseModel):
    """A base branch and the ordered chain of branches stacked on it.

    ``branches[i]`` is forked from ``branches[i - 1]``, the first one from
    ``base_branch``.
    """
    name: str
    base_branch: str = Field(alias="baseBranch")
    branches: List[str] = Field(default_factory=list)

    class Config:
        """Pydantic config."""
        populate_by_name = True
        frozen = True

    @field_validator('branches')
    @classmethod
    def _no_duplicates(cls, branches: List[str]) -> List[str]:
        seen: Set[str] = set()
        dupes: List[str] = []
        for branch in branches:
            if branch in seen:
                dupes.append(branch)
            seen.add(branch)
        if dupes:
            raise ValueError(f"duplicate branches in stack: {', '.join(dupes)}")
        return branches

    @model_validator(mode='after')
    def _base_not_member(self) -> 'Stack':
        if self.base_branch in self.branches:
            raise ValueError(f"base branch '{self.base_branch}' cannot also be a stacked branch")
        return self

class RepoConfig(BaseModel):
    """Repository coordinates, derived from the git remote at load time."""
    github_remote: str = "origin"
    github_host: str = "github.com"
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

class Settings(BaseModel):
    """User-tunable settings stored next to the stacks."""
    default_base_branch: str = Field("main", alias="defaultBaseBranch")
    remote: str = "origin"
    poll_interval_ms: int = Field(30000, alias="pollIntervalMs")
    concurrency: int = 0
    label_color: str = Field("5319E7", alias="labelColor")
    open_browser: bool = Field(True, alias="openBrowser")
    delete_merged_branches: bool = Field(True, alias="deleteMergedBranches")

    class Config:
        """Pydantic config."""
        populate_by_name = True
        extra = "allow"  # Allow settings written by newer versions

class StackboiConfig(BaseModel):
    """Full stackboi configuration."""
    version: int = 1
    stacks: List[Stack] = Field(default_factory=list)
    settings: Settings = Field(default_factory=Settings)
    repo: RepoConfig = Field(default_factory=RepoConfig, exclude=True)

    class Config:
        """Pydantic config."""
        populate_by_name = True
        extra = "allow"
