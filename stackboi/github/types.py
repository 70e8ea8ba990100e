"""Type definitions for GitHub API responses."""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..errors import MalformedHostingResponse
from ..models import PullRequest

logger = logging.getLogger(__name__)

# REST response types with Pydantic models
class RefPayload(BaseModel):
    ref: str
    sha: str = ""

class LabelPayload(BaseModel):
    name: str

class PRPayload(BaseModel):
    number: int
    html_url: str
    state: str
    title: str = ""
    body: Optional[str] = None
    draft: Optional[bool] = None
    merged: Optional[bool] = None
    merged_at: Optional[str] = None
    base: RefPayload
    head: RefPayload
    labels: List[LabelPayload] = Field(default_factory=list)

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @property
    def is_merged(self) -> bool:
        return bool(self.merged) or self.merged_at is not None

def validate_pr_payload(data: Optional[Dict[str, object]]) -> PRPayload:
    """Validate a pull request payload.

    Raises:
        MalformedHostingResponse: the payload is missing or not a pull request.
    """
    if not data:
        raise MalformedHostingResponse("Empty pull request payload")
    try:
        return PRPayload.model_validate(data)
    except ValidationError as e:
        raise MalformedHostingResponse(f"Malformed pull request payload: {e.error_count()} validation errors") from e

def parse_pr_payload(data: Optional[Dict[str, object]]) -> Optional[PRPayload]:
    """Parse a pull request payload, or None when it is not one."""
    if not data:
        return None
    try:
        return validate_pr_payload(data)
    except MalformedHostingResponse as e:
        logger.warning(f"Ignoring pull request data: {e}")
        logger.debug(f"Payload: {data}")
        return None

def to_pull_request(payload: PRPayload) -> PullRequest:
    """Convert a validated payload into our PullRequest record."""
    if payload.is_merged:
        state = 'merged'
    elif payload.state.lower() == 'open':
        state = 'open'
    else:
        state = 'closed'
    return PullRequest(
        number=payload.number,
        url=payload.html_url,
        state=state,
        is_draft=bool(payload.draft),
        base_ref=payload.base.ref,
        head_ref=payload.head.ref,
        title=payload.title,
        labels=tuple(label.name for label in payload.labels),
    )
