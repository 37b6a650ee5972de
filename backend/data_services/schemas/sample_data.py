"""
Data Services — Sample Data Schemas
=====================================

What:  Pydantic models for the seed payload and the reseed summary.
How:   SampleRecord parses one record of the remote JSON collection. Extra
       keys are ignored and missing keys become None (NULL columns), which
       mirrors inserting whatever the endpoint returned.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SampleRecord(BaseModel):
    """One record of the seed collection: {id, postId, name, email, body}."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[int] = Field(default=None, description="Record id from the seed endpoint")
    post_id: Optional[int] = Field(default=None, alias="postId", description="Parent post id")
    name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    body: Optional[str] = Field(default=None)

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for an INSERT into sampleData."""
        return self.model_dump(by_alias=True)


class SeedSummary(BaseModel):
    """Outcome of one seed_all() run."""

    fetched: int = Field(description="Records returned by the seed endpoint")
    inserted: int = Field(description="Rows written to sampleData")
    failed: int = Field(description="Records whose insert failed and was swallowed")
