"""
Summarizer - turns repository and issue metadata into beginner-facing annotations.

Has no database dependencies: takes metadata, returns validated results.
Malformed model output raises SummarizerOutputError so the annotation
processor can count the item as failed.
"""

import json
import time
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field

from pipeline.exceptions import SummarizerOutputError
from summarizer.llm_client import LLMClient
from summarizer.prompt_template import build_issue_analysis_prompt, build_repo_summary_prompt
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


class RepoSummary(BaseModel):
    summary: str


class IssueAnalysis(BaseModel):
    intro: str
    difficulty: int = Field(ge=1, le=5)
    first_steps: str


def parse_json_object(response_text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from an LLM reply.

    Handles replies that wrap the object in markdown fences or prose.

    Raises:
        json.JSONDecodeError: If no JSON object can be found
    """
    try:
        parsed = json.loads(response_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost {...} span
    start = response_text.find("{")
    end = response_text.rfind("}")
    if start >= 0 and end > start:
        parsed = json.loads(response_text[start:end + 1])
        if isinstance(parsed, dict):
            return parsed

    raise json.JSONDecodeError("No JSON object found in response", response_text, 0)


def validate_issue_analysis(data: Dict[str, Any]) -> IssueAnalysis:
    """
    Check required fields and clamp difficulty into 1..5.

    Raises:
        ValueError: If a field is missing, empty, or difficulty is not a number
    """
    missing = [f for f in ("intro", "difficulty", "firstSteps") if not data.get(f)]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    try:
        difficulty = int(float(data["difficulty"]))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid difficulty: {data['difficulty']!r}")

    return IssueAnalysis(
        intro=str(data["intro"]).strip(),
        difficulty=max(1, min(5, difficulty)),
        first_steps=str(data["firstSteps"]).strip(),
    )


class Summarizer:
    """Produces repo summaries and issue analyses with an LLM."""

    def __init__(
        self,
        llm_client: LLMClient,
        max_retries: int = 2,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            llm_client: Client used for every prompt
            max_retries: Extra attempts when the reply cannot be parsed/validated
            retry_delay: Seconds between validation retries
            sleep: Sleep function (injected in tests)
        """
        self.llm_client = llm_client
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

    @classmethod
    def from_credentials(cls, provider: str, model: str, api_key: Optional[str]) -> "Summarizer":
        return cls(LLMClient(provider=provider, model=model, api_key=api_key or ""))

    def summarize_repo(self, owner: str, name: str, languages: list[str]) -> RepoSummary:
        """
        Generate a one-paragraph beginner-friendly repository summary.

        Raises:
            SummarizerOutputError: If the model returns an empty reply
        """
        prompt = build_repo_summary_prompt(owner, name, languages)
        text = self.llm_client.send_prompt(prompt).strip()
        if not text:
            raise SummarizerOutputError(f"Empty summary returned for {owner}/{name}")
        logger.info(f"✓ Summarized {owner}/{name} ({len(text)} chars)")
        return RepoSummary(summary=text)

    def analyze_issue(self, owner: str, name: str, title: str, body: Optional[str]) -> IssueAnalysis:
        """
        Produce intro, difficulty (1-5) and first steps for an issue.

        Malformed JSON is sent back to the model for repair; replies with
        missing fields are retried from the original prompt.

        Raises:
            SummarizerOutputError: If no valid analysis is obtained after all retries
        """
        prompt = build_issue_analysis_prompt(owner, name, title, body)
        total_attempts = self.max_retries + 1

        response_text = None
        for attempt in range(1, total_attempts + 1):
            if response_text is None:
                response_text = self.llm_client.send_prompt(prompt)

            try:
                analysis = validate_issue_analysis(parse_json_object(response_text))
                logger.info(f"✓ Analyzed issue '{title[:60]}' (difficulty {analysis.difficulty}, attempt {attempt})")
                return analysis

            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse JSON response (attempt {attempt}): {e}")
                if attempt == total_attempts:
                    raise SummarizerOutputError(
                        f"Unparseable issue analysis after {total_attempts} attempts"
                    ) from e
                logger.info("Asking LLM to fix malformed JSON...")
                fix_prompt = (
                    "The following JSON is malformed. Please return a corrected, "
                    f"properly formatted JSON object with the same content:\n\n{response_text}"
                )
                response_text = self.llm_client.send_prompt(fix_prompt)

            except ValueError as e:
                logger.warning(f"Invalid issue analysis (attempt {attempt}): {e}")
                if attempt == total_attempts:
                    raise SummarizerOutputError(
                        f"Invalid issue analysis after {total_attempts} attempts: {e}"
                    ) from e
                response_text = None
                self.sleep(self.retry_delay)

        # Unreachable: the loop either returns or raises
        raise SummarizerOutputError("Issue analysis failed")
