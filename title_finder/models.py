from __future__ import annotations

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatTurn(BaseModel):
    """One caller-owned conversation turn."""
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    """Request payload for the chat API; history is replayed on every call."""
    message: str = ""
    history: List[ChatTurn] = Field(default_factory=list)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AudienceContext(_CamelModel):
    """Audience details gathered during the interview."""
    company: str = ""
    seniority: str = ""
    industry: str = ""
    company_size: str = Field(default="", alias="companySize")
    exclusions: str = ""


class InterviewQuestion(_CamelModel):
    """Non-terminal interview result: the caller answers and calls again."""
    type: Literal["question"] = "question"
    message: str
    question_number: int = Field(default=0, alias="questionNumber")
    total_questions: int = Field(default=0, alias="totalQuestions")
    context: AudienceContext = Field(default_factory=AudienceContext)


class InterviewReady(_CamelModel):
    """Terminal interview result: the next turn switches to title generation."""
    type: Literal["ready"] = "ready"
    message: str
    context: AudienceContext = Field(default_factory=AudienceContext)
    search_description: str = Field(default="", alias="searchDescription")


class TitleTiers(BaseModel):
    high: List[str] = Field(default_factory=list)
    medium: List[str] = Field(default_factory=list)
    explore: List[str] = Field(default_factory=list)

    def count(self) -> int:
        return len(self.high) + len(self.medium) + len(self.explore)


class Recommendation(_CamelModel):
    """Tiered job title recommendation returned to the caller."""
    type: Literal["titles"] = "titles"
    message: str
    audience_name: str = Field(default="", alias="audienceName")
    titles: TitleTiers = Field(default_factory=TitleTiers)
    total_count: int = Field(default=0, alias="totalCount")
    reasoning: str = ""
    tip: str = ""


ChatResult = Annotated[
    Union[InterviewQuestion, InterviewReady, Recommendation],
    Field(discriminator="type"),
]


class WebsiteScanRequest(BaseModel):
    url: str = ""


class WebsiteScanResponse(BaseModel):
    url: str
    summary: str


class ErrorResponse(BaseModel):
    error: str
