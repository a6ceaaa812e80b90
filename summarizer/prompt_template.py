"""Prompt templates for repository summaries and issue analysis."""

from typing import Optional

ISSUE_BODY_LIMIT = 1000


REPO_SUMMARY_PROMPT = """You are an expert at analyzing open-source repositories. Generate a concise, beginner-friendly summary of the following repository.

Repository: {owner}/{name}
Primary Languages: {languages}

Write ONE paragraph (3-5 sentences) that explains:
1. What the project does
2. Who would use it
3. Why it's interesting for beginners

Keep it simple, welcoming, and focused on what makes this project a good learning opportunity.

Summary:"""


ISSUE_ANALYSIS_PROMPT = """You are an expert at helping beginners contribute to open-source. Analyze this GitHub issue and provide guidance.

Repository: {owner}/{name}
Issue Title: {title}
Issue Description:
{body}

Provide the following in JSON format:
{{
  "intro": "2-3 sentence introduction explaining what this issue is about in simple terms",
  "difficulty": <number 1-5, where 1=very easy for absolute beginners, 5=requires advanced knowledge>,
  "firstSteps": "Specific actionable steps a beginner should take to start working on this issue (2-3 sentences)"
}}

Focus on being encouraging and practical. Think about what a complete beginner would need to know.

Response:"""


def build_repo_summary_prompt(owner: str, name: str, languages: list[str]) -> str:
    return REPO_SUMMARY_PROMPT.format(
        owner=owner,
        name=name,
        languages=", ".join(languages) if languages else "Unknown",
    )


def build_issue_analysis_prompt(owner: str, name: str, title: str, body: Optional[str]) -> str:
    """Format the issue prompt, truncating long bodies to ISSUE_BODY_LIMIT chars."""
    text = body or "No description provided."
    if len(text) > ISSUE_BODY_LIMIT:
        text = text[:ISSUE_BODY_LIMIT] + " ..."
    return ISSUE_ANALYSIS_PROMPT.format(owner=owner, name=name, title=title, body=text)
