import json
import logging
import re
from typing import Any, Dict, List, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.utils.json import parse_json_markdown
from langchain_ollama import ChatOllama
from pydantic import ValidationError

from ritual.config import settings
from ritual.errors import (
    EMPTY_RESPONSE,
    GENERATION_ERROR,
    MALFORMED_RESPONSE,
    QUOTA_EXCEEDED,
    RATE_LIMITED,
    GenerationFailed,
)
from ritual.schemas import RitualProposal

logger = logging.getLogger(__name__)


def get_generator():
    """Factory function to return the appropriate generator based on config"""
    if settings.ai_provider.lower() == "claude":
        return ClaudeRitualGenerator()
    else:
        return OllamaRitualGenerator()


# Phrases stripped from free text before it reaches the model. A deny-list,
# not a security boundary.
INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?(the\s+)?above", re.IGNORECASE),
    re.compile(r"\b(system|assistant|user)\s*:", re.IGNORECASE),
    re.compile(r"\[/?INST\]", re.IGNORECASE),
    re.compile(r"<\|im_(start|end)\|>", re.IGNORECASE),
    re.compile(r"<\|?/?(system|endoftext)\|?>", re.IGNORECASE),
]


def sanitize_input(value: Any) -> Any:
    """Recursively strip instruction-override sequences from strings in ``value``"""
    if isinstance(value, str):
        for pattern in INJECTION_PATTERNS:
            value = pattern.sub("", value)
        return re.sub(r"\s{2,}", " ", value).strip()
    if isinstance(value, dict):
        return {key: sanitize_input(item) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_input(item) for item in value]
    return value


def _load_json(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return parse_json_markdown(raw)
    except (json.JSONDecodeError, OutputParserException, ValueError) as e:
        raise GenerationFailed(MALFORMED_RESPONSE, f"Generation returned invalid JSON: {e}") from e


def parse_proposals(raw: Any) -> List[RitualProposal]:
    """
    Parse the generation function's reply into proposals.

    Accepts a JSON array, optionally fenced in ```json ... ```, or an object
    wrapping the array under "rituals" (local models in JSON mode tend to
    return an object).
    """
    data = _load_json(raw)

    if isinstance(data, dict):
        data = data.get("rituals", data.get("proposals"))
    if data is None:
        raise GenerationFailed(MALFORMED_RESPONSE, "Generation reply did not contain a ritual list")
    if not isinstance(data, list):
        raise GenerationFailed(MALFORMED_RESPONSE, "Generation reply was not a list of rituals")
    if not data:
        raise GenerationFailed(EMPTY_RESPONSE, "Generation returned no rituals")

    try:
        return [RitualProposal.model_validate(item) for item in data]
    except ValidationError as e:
        raise GenerationFailed(MALFORMED_RESPONSE, f"Generated ritual had the wrong shape: {e}") from e


def parse_single_proposal(raw: Any) -> RitualProposal:
    """Parse the swap reply: one ritual object (or a one-item list / {"ritual": {...}})"""
    data = _load_json(raw)

    if isinstance(data, dict) and "ritual" in data:
        data = data["ritual"]
    if isinstance(data, list):
        if not data:
            raise GenerationFailed(EMPTY_RESPONSE, "Swap returned no ritual")
        data = data[0]
    try:
        return RitualProposal.model_validate(data)
    except ValidationError as e:
        raise GenerationFailed(MALFORMED_RESPONSE, f"Swapped ritual had the wrong shape: {e}") from e


def _status_code(exc: Exception) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify_generation_error(exc: Exception) -> str:
    """Map a provider exception onto a generation error code"""
    if isinstance(exc, GenerationFailed):
        return exc.code

    status = _status_code(exc)
    if status == 429:
        return RATE_LIMITED
    if status == 402:
        return QUOTA_EXCEEDED

    msg = str(exc).lower()
    if "quota" in msg or "credit" in msg or "insufficient" in msg:
        return QUOTA_EXCEEDED
    if "429" in msg or "rate limit" in msg or "resource_exhausted" in msg or "too many requests" in msg:
        return RATE_LIMITED
    return GENERATION_ERROR


MOOD_CARD_LABELS = {
    "adventure": "Craving adventure",
    "cozy": "Need cozy time",
    "deep-talk": "Want deep conversations",
    "playful": "Feeling playful",
    "romantic": "Craving romance",
    "tired": "Exhausted",
    "spontaneous": "Ready for anything",
    "outdoors": "Want fresh air",
    "creative": "Feeling creative",
    "foodie": "Food-focused",
    "budget": "Keeping it free",
    "splurge": "Ready to splurge",
}

RITUAL_JSON_SHAPE = """{
    "title": "Short, evocative title",
    "description": "3-4 sentences of specific, sensory instructions. Include a phone-free reminder and a reflection prompt at the end.",
    "time_estimate": "15min" | "30min" | "1hr" | "1-2hrs" | "2-3hrs",
    "budget_band": "free" | "$" | "$$" | "$$$",
    "category": "conversation" | "touch" | "adventure" | "appreciation" | "creative" | "food" | "outdoors",
    "why": "Which intimacy dimensions this targets and why it suits them"
  }"""


class BaseRitualGenerator:
    """Base class for AI-powered weekly ritual generation"""

    def __init__(self, llm=None):
        self.llm = llm
        self.parser = StrOutputParser()

    def generate_rituals(
        self,
        partner_one_input: Dict[str, Any],
        partner_two_input: Dict[str, Any],
        location: Dict[str, str],
        history: Dict[str, Any]
    ) -> List[RitualProposal]:
        """
        Generate 4-5 ritual proposals for the couple's week.

        Args:
            partner_one_input: {"mood_tags": [...], "desire": str | None}
            partner_two_input: same shape for the other partner
            location: output of ritual.location.location_context
            history: {"completed_titles": [...], "highly_rated": [...], "reflections": [...]}

        Returns:
            Validated proposals

        Raises:
            GenerationFailed: rate limit, quota, malformed or empty reply
        """
        request = self._build_full_prompt(
            sanitize_input(partner_one_input),
            sanitize_input(partner_two_input),
            location,
            history
        )
        raw = self._invoke(request)
        rituals = parse_proposals(raw)
        logger.info("%s produced %d rituals", self.__class__.__name__, len(rituals))
        return rituals

    def swap_ritual(
        self,
        current_title: str,
        partner_one_input: Dict[str, Any],
        partner_two_input: Dict[str, Any],
        location: Dict[str, str],
        history: Dict[str, Any],
        exclude_titles: List[str]
    ) -> RitualProposal:
        """Ask for one replacement ritual that repeats nothing in ``exclude_titles``"""
        request = self._build_swap_prompt(
            current_title,
            sanitize_input(partner_one_input),
            sanitize_input(partner_two_input),
            location,
            history,
            exclude_titles
        )
        raw = self._invoke(request)
        return parse_single_proposal(raw)

    def _invoke(self, request: str) -> str:
        if self.llm is None:
            raise GenerationFailed(GENERATION_ERROR, "No language model configured")

        prompt = ChatPromptTemplate.from_messages([
            ("system", "{system_prompt}"),
            ("human", "{request}")
        ])
        chain = prompt | self.llm | self.parser

        logger.debug("Generation request for %s:\n%s", self.__class__.__name__, request)
        try:
            return chain.invoke({
                "system_prompt": self._build_system_prompt(),
                "request": request
            })
        except Exception as e:
            code = classify_generation_error(e)
            logger.warning("Generation call failed (%s): %s", code, e)
            raise GenerationFailed(code, str(e)) from e

    def _build_system_prompt(self) -> str:
        """Build system prompt for LLM"""
        return """You are an expert relationship ritual designer trained on intimacy psychology and evidence-based bonding techniques.

**Intimacy dimensions you design for:**
- Emotional vulnerability: sharing feelings, fears and dreams without judgment
- Physical touch: proximity, slow pacing, sensory focus
- Shared experience: novel activities and joint discovery
- Quality attention: undivided focus, no multitasking
- Playfulness: low stakes, humor, spontaneity
- Appreciation: specific gratitude and acknowledgment

**Every ritual MUST include:**
1. Phone-free time, stated explicitly
2. Mutual participation - both partners active, not one watching the other
3. A reflection moment at the end ("afterwards, share...")
4. A clear start and a clear closing

**Never generate:**
- Passive consumption ("watch a movie") without a structured interaction
- Vague defaults ("go out to dinner", "be romantic", "have a deep conversation") without specific prompts
- Rituals the couple has already completed

Reply with JSON only. No commentary before or after it."""

    def _format_input(self, partner_input: Dict[str, Any]) -> str:
        if not partner_input:
            return "No input"
        tags = partner_input.get("mood_tags") or []
        labels = [MOOD_CARD_LABELS.get(tag, tag) for tag in tags]
        text = f"Selected moods: {', '.join(labels) if labels else 'none'}"
        if partner_input.get("desire"):
            text += f"\n  Heart's desire: {partner_input['desire']}"
        return text

    def _format_history(self, history: Dict[str, Any]) -> str:
        """Format what the couple has already done"""
        completed = history.get("completed_titles") or []
        highly_rated = history.get("highly_rated") or []
        reflections = history.get("reflections") or []

        if not completed:
            lines = ["- No rituals completed yet - this is their first week!"]
        else:
            lines = ["Rituals they've already completed (DO NOT REPEAT THESE):"]
            lines += [f'  - "{title}"' for title in completed[:15]]
            if len(completed) > 15:
                lines.append(f"  ... and {len(completed) - 15} more")

        if highly_rated:
            lines.append("Highly rated experiences (4-5 stars) - lean into these themes:")
            lines += [f'  - "{m["title"]}" ({m["rating"]} stars)' for m in highly_rated]

        if reflections:
            lines.append("Their reflections:")
            lines += [f'  - "{m["title"]}": {m["notes"]}' for m in reflections[:5]]

        return "\n".join(lines)

    def _format_location(self, location: Dict[str, str]) -> str:
        return f"""- City: {location["city"]}, {location["country"]}
- Local time: {location["local_time"]}
- Season: {location["season"]}
- Time of day: {location["time_of_day"]}
- Seasonal guidance: {location["seasonal_guidance"]}"""

    def _build_full_prompt(
        self,
        partner_one_input: Dict[str, Any],
        partner_two_input: Dict[str, Any],
        location: Dict[str, str],
        history: Dict[str, Any]
    ) -> str:
        """Build complete prompt with couple context"""
        return f"""**This Couple's History:**
{self._format_history(history)}

**Their Inputs This Week:**
Partner 1: {self._format_input(partner_one_input)}
Partner 2: {self._format_input(partner_two_input)}

**Location Context (all rituals must fit this):**
{self._format_location(location)}

**Task:** Create a week of personalized rituals for this couple.

1. Map their mood cards to intimacy dimensions. Where the partners overlap, lean in hard; where they diverge, find rituals that satisfy both (one "adventure", one "cozy" = stargazing with blankets).
2. Vary the archetypes: deep conversation, touch & presence, shared challenge, appreciation, novel experience.
3. Include at least ONE micro-ritual (15-30 min) and at least ONE deeper ritual (1-2 hours).
4. Mix home-based and outside activities appropriate to {location["city"]} in {location["season"]}.

Generate 4-5 rituals. Return a JSON array:
[
  {RITUAL_JSON_SHAPE}
]"""

    def _build_swap_prompt(
        self,
        current_title: str,
        partner_one_input: Dict[str, Any],
        partner_two_input: Dict[str, Any],
        location: Dict[str, str],
        history: Dict[str, Any],
        exclude_titles: List[str]
    ) -> str:
        """Build prompt for replacing one ritual"""
        excluded = "\n".join(f'  - "{title}"' for title in exclude_titles) or "  - (none)"
        return f"""**Swap Request:** Replace the ritual "{current_title}" with ONE alternative that is similarly matched to their needs but more interesting.

**This Couple's History:**
{self._format_history(history)}

**Their Inputs This Week:**
Partner 1: {self._format_input(partner_one_input)}
Partner 2: {self._format_input(partner_two_input)}

**Location Context:**
{self._format_location(location)}

**Do NOT use any of these titles:**
{excluded}

Return ONE ritual as a JSON object:
{RITUAL_JSON_SHAPE}"""


class OllamaRitualGenerator(BaseRitualGenerator):
    """Generator using local Ollama for development"""

    def __init__(self):
        super().__init__()
        self.llm = ChatOllama(
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            temperature=0.7,
            format="json",
            client_kwargs={"timeout": settings.generation_ceiling_seconds}
        )


class ClaudeRitualGenerator(BaseRitualGenerator):
    """Generator using Claude API for production"""

    def __init__(self):
        super().__init__()
        if not settings.claude_api_key:
            raise ValueError("CLAUDE_API_KEY not set in environment variables")

        self.llm = ChatAnthropic(
            model=settings.claude_model,
            api_key=settings.claude_api_key,
            temperature=0.7,
            timeout=settings.generation_ceiling_seconds,
            max_retries=0
        )
