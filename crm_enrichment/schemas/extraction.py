"""
Structured-output schemas sent to the research agent.

Two fixed variants, selected by record type. Field names are snake_case in
Python and camelCase on the wire (the agent returns camelCase keys).
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models.crm_record import RecordType


class _AgentSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Person
# ---------------------------------------------------------------------------

class ExperienceEntry(_AgentSchema):
    title: str = Field("", description="Job title")
    company: str = Field("", description="Company name")
    duration: str = Field("", description="Time period")
    description: str = Field("", description="Role description")


class SocialLinks(_AgentSchema):
    linkedin: str = ""
    twitter: str = ""
    github: str = ""
    website: str = ""


class PersonExtraction(_AgentSchema):
    headline: str = Field("", description="Professional headline or tagline")
    current_role: str = Field("", description="Current job title")
    company: str = Field("", description="Current company name")
    location: str = Field("", description="City, Country")
    summary: str = Field("", description="Professional bio summary")
    experience: list[ExperienceEntry] = Field(default_factory=list, description="Work experience history")
    education: list[str] = Field(default_factory=list, description="Education background")
    skills: list[str] = Field(default_factory=list, description="Professional skills")
    notable_achievements: list[str] = Field(
        default_factory=list, description="Awards, publications, notable work"
    )
    social_links: SocialLinks = Field(
        default_factory=SocialLinks, description="Social media and web profiles"
    )


# ---------------------------------------------------------------------------
# Company
# ---------------------------------------------------------------------------

class Founder(_AgentSchema):
    name: str = Field("", description="Full name of founder")
    role: str = Field("", description="Current title/role")
    background: str = Field("", description="Brief bio or background")
    linkedin: str = Field("", description="LinkedIn profile URL")


class Leader(_AgentSchema):
    name: str = ""
    role: str = ""


class FundingRound(_AgentSchema):
    round_type: str = Field("", description="Seed, Series A, B, etc.")
    amount: str = Field("", description="Amount raised with currency")
    date: str = Field("", description="Date in YYYY-MM format")
    investors: list[str] = Field(default_factory=list, description="Lead investors")


class NewsItem(_AgentSchema):
    headline: str = ""
    date: str = ""
    source: str = ""
    summary: str = ""


class CompanyExtraction(_AgentSchema):
    description: str = Field("", description="Company mission and what they do")
    industry: str = Field("", description="Primary industry classification")
    headquarters: str = Field("", description="City, State/Country")
    year_founded: str = Field("", description="Year the company was founded")
    team_size: str = Field("", description="Approximate employee count or range")
    website: str = Field("", description="Official website URL")
    founders: list[Founder] = Field(default_factory=list, description="Company founders and co-founders")
    leadership: list[Leader] = Field(
        default_factory=list, description="Key leadership team members (CEO, CTO, etc.)"
    )
    funding: list[FundingRound] = Field(default_factory=list, description="Funding history")
    total_funding_raised: str = Field("", description="Total funding raised with currency")
    recent_news: list[NewsItem] = Field(
        default_factory=list, description="Recent news articles and announcements"
    )
    products: list[str] = Field(default_factory=list, description="Key products or services")
    key_metrics: list[str] = Field(
        default_factory=list, description="Notable metrics (revenue, users, growth)"
    )
    competitors: list[str] = Field(default_factory=list, description="Main competitors")
    tech_stack: list[str] = Field(default_factory=list, description="Known technologies used")


EXTRACTION_SCHEMAS: dict[RecordType, type[_AgentSchema]] = {
    RecordType.PERSON: PersonExtraction,
    RecordType.COMPANY: CompanyExtraction,
}


def extraction_schema_for(record_type: RecordType | str) -> type[_AgentSchema]:
    return EXTRACTION_SCHEMAS[RecordType(record_type)]


def agent_json_schema(record_type: RecordType | str) -> dict[str, Any]:
    """JSON schema (camelCase properties) for the agent's structured output."""
    return extraction_schema_for(record_type).model_json_schema(by_alias=True)
