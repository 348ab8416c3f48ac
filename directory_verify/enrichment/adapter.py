"""
Enrichment adapters for DirectoryVerify.

Adapters suggest corrected field values for a provider record. Suggestions
are advisory: they are stored with the record for a reviewer and never
overwrite field values. Any failure surfaces as EnrichmentUnavailable.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

import phonenumbers
from phonenumbers import PhoneNumberFormat

from directory_verify.errors import ConfigurationError, EnrichmentUnavailable

logger = logging.getLogger(__name__)

SUGGESTED_PREFIX = "suggested_"

SUGGESTION_FIELDS = ("phone", "address", "city", "state", "zip", "email")

CORRECTION_SCHEMA = {
    "type": "object",
    "properties": {
        **{f"{SUGGESTED_PREFIX}{name}": {"type": "string"} for name in SUGGESTION_FIELDS},
        "issues_found": {"type": "array", "items": {"type": "string"}},
        "confidence_adjustment": {"type": "number"},
    },
}

STATE_ABBREVIATIONS = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY", "district of columbia": "DC"
}

LLMCallable = Callable[[str, Dict[str, Any]], Optional[Mapping[str, Any]]]


@dataclass
class EnrichmentResult:
    """Suggested values keyed by field name, plus an optional score adjustment."""
    suggestions: Dict[str, str] = field(default_factory=dict)
    confidence_adjustment: int = 0
    issues_found: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "EnrichmentResult":
        return cls()


class EnrichmentAdapter:
    """Base class for enrichment collaborators."""

    name = "base"

    def suggest(self, fields: Mapping[str, str]) -> EnrichmentResult:
        """
        Suggest corrections for a provider's field values.

        Args:
            fields: Provider field values

        Returns:
            EnrichmentResult

        Raises:
            EnrichmentUnavailable: If suggestions cannot be produced
        """
        raise NotImplementedError


class PromptEnrichmentAdapter(EnrichmentAdapter):
    """
    Asks a language model for corrections.

    The model call itself is supplied by the caller as ``invoke_llm(prompt, schema)``
    returning a mapping shaped like CORRECTION_SCHEMA.
    """

    name = "prompt"

    def __init__(self, invoke_llm: LLMCallable):
        self.invoke_llm = invoke_llm

    def build_prompt(self, fields: Mapping[str, str]) -> str:
        return (
            "Analyze this healthcare provider data and suggest corrections if needed:\n"
            f"Name: {fields.get('name', '')}\n"
            f"Phone: {fields.get('phone', '')}\n"
            f"Address: {fields.get('address', '')}, {fields.get('city', '')}, "
            f"{fields.get('state', '')} {fields.get('zip', '')}\n"
            f"Email: {fields.get('email', '')}\n"
            f"Website: {fields.get('website', '')}\n\n"
            "Return a JSON with any suggested corrections for formatting issues, "
            "common mistakes, or suspicious data.\n"
            "Only include fields that need correction."
        )

    def suggest(self, fields: Mapping[str, str]) -> EnrichmentResult:
        try:
            response = self.invoke_llm(self.build_prompt(fields), CORRECTION_SCHEMA)
        except Exception as e:
            raise EnrichmentUnavailable(f"Language model call failed: {e}") from e

        if not response:
            return EnrichmentResult.empty()
        if not isinstance(response, Mapping):
            raise EnrichmentUnavailable(f"Unexpected language model response type: {type(response).__name__}")

        return self.parse_response(response)

    @staticmethod
    def parse_response(response: Mapping[str, Any]) -> EnrichmentResult:
        """Convert a model response into an EnrichmentResult."""
        suggestions = {
            key[len(SUGGESTED_PREFIX):]: str(value).strip()
            for key, value in response.items()
            if key.startswith(SUGGESTED_PREFIX) and value and str(value).strip()
        }

        try:
            adjustment = round(float(response.get("confidence_adjustment") or 0))
        except (TypeError, ValueError) as e:
            raise EnrichmentUnavailable(f"Invalid confidence_adjustment in response: {e}") from e

        issues = response.get("issues_found") or []
        if isinstance(issues, str):
            issues = [issues]

        return EnrichmentResult(
            suggestions=suggestions,
            confidence_adjustment=adjustment,
            issues_found=[str(issue) for issue in issues],
        )


class RuleBasedEnrichmentAdapter(EnrichmentAdapter):
    """
    Offline suggestions from deterministic formatting rules.

    Never adjusts the confidence score.
    """

    name = "rule_based"

    def __init__(self, default_region: str = "US"):
        """
        Initialize rule-based adapter.

        Args:
            default_region: Region used to parse phone numbers without a country code
        """
        self.default_region = default_region
        self.zip9_pattern = re.compile(r"^(\d{5})\d{4}$")

    def suggest(self, fields: Mapping[str, str]) -> EnrichmentResult:
        suggestions: Dict[str, str] = {}
        issues: List[str] = []

        for field_name, rule in (("phone", self.suggest_phone), ("state", self.suggest_state),
                                 ("email", self.suggest_email), ("zip", self.suggest_zip)):
            current = (fields.get(field_name) or "").strip()
            if not current:
                continue
            suggestion = rule(current)
            if suggestion and suggestion != current:
                suggestions[field_name] = suggestion
                issues.append(f"{field_name} formatting")

        return EnrichmentResult(suggestions=suggestions, issues_found=issues)

    def suggest_phone(self, phone: str) -> Optional[str]:
        """National format of a valid phone number."""
        try:
            parsed_phone = phonenumbers.parse(phone, self.default_region)
        except phonenumbers.NumberParseException as e:
            logger.debug(f"Could not parse phone '{phone}': {e}")
            return None

        if not phonenumbers.is_valid_number(parsed_phone):
            return None
        return phonenumbers.format_number(parsed_phone, PhoneNumberFormat.NATIONAL)

    @staticmethod
    def suggest_state(state: str) -> Optional[str]:
        """Postal abbreviation for a state name."""
        lowered = state.lower()
        if len(lowered) == 2 and lowered.isalpha():
            return lowered.upper()
        return STATE_ABBREVIATIONS.get(lowered)

    @staticmethod
    def suggest_email(email: str) -> Optional[str]:
        return email.lower()

    def suggest_zip(self, zip_code: str) -> Optional[str]:
        match = self.zip9_pattern.match(zip_code)
        return match.group(1) if match else None


def create_enrichment_adapter(config: Mapping[str, Any],
                              invoke_llm: Optional[LLMCallable] = None) -> Optional[EnrichmentAdapter]:
    """
    Build the configured enrichment adapter.

    Args:
        config: ``enrichment`` configuration section
        invoke_llm: Language model callable for the prompt adapter

    Returns:
        Adapter, or None when enrichment is disabled

    Raises:
        ConfigurationError: If the adapter name is unknown or the prompt adapter has no callable
    """
    if not config.get("enabled", False):
        return None

    adapter_name = config.get("adapter", "rule_based")
    if adapter_name == RuleBasedEnrichmentAdapter.name:
        adapter: EnrichmentAdapter = RuleBasedEnrichmentAdapter(config.get("default_region", "US"))
    elif adapter_name == PromptEnrichmentAdapter.name:
        if invoke_llm is None:
            raise ConfigurationError("Prompt enrichment requires a language model callable")
        adapter = PromptEnrichmentAdapter(invoke_llm)
    else:
        raise ConfigurationError(f"Unknown enrichment adapter: {adapter_name}")

    logger.info(f"Using {adapter.name} enrichment adapter")
    return adapter
