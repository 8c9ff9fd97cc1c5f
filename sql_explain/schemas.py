from pydantic import BaseModel, ConfigDict, Field


class ExplainRequest(BaseModel):
    """
    Incoming request payload for the explain endpoint.

    sql: the query to explain (required)
    challengeId / title / description / gradeStatus: optional challenge context
    Only sql, challengeId, title and gradeStatus feed the cache key.
    """
    model_config = ConfigDict(populate_by_name=True)

    sql: str
    challenge_id: str | int | None = Field(default=None, alias="challengeId")
    title: str | None = None
    description: str | None = None
    grade_status: str | None = Field(default=None, alias="gradeStatus")


class ExplainResponse(BaseModel):
    explanation: str
    cached: bool | None = None


class ErrorResponse(BaseModel):
    error: str
