"""Static pricing rules and per-call cost calculation."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from speechbench_engine.core.config import settings


@dataclass(frozen=True)
class PricingRule:
    id: str
    service_type: str  # "tts" | "asr"
    unit: str  # per_char, per_credit, per_1k_chars, per_10k_chars, per_second, per_minute
    amount: float
    currency: str  # "USD" | "CNY"
    source: str
    template_type: Optional[str] = None
    provider_ids: Optional[Tuple[str, ...]] = None
    model_id: Optional[str] = None
    notes: Optional[str] = None
    is_estimated: bool = False
    chars_per_minute: Optional[int] = None
    chars_per_second: Optional[float] = None


@dataclass
class CostBreakdown:
    amount_usd: float
    original_amount: float
    original_currency: str
    unit: str
    usage_amount: float
    rule_id: str
    is_estimated: bool
    exchange_rate: float
    notes: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amountUsd": self.amount_usd,
            "originalAmount": self.original_amount,
            "originalCurrency": self.original_currency,
            "unit": self.unit,
            "usageAmount": self.usage_amount,
            "ruleId": self.rule_id,
            "isEstimated": self.is_estimated,
            "exchangeRate": self.exchange_rate,
            "notes": self.notes,
            "meta": self.meta,
        }


# First matching rule wins, so specific rules go before generic ones.
PRICING_RULES: List[PricingRule] = [
    PricingRule(
        id="openai-tts-1",
        service_type="tts",
        template_type="openai",
        model_id="tts-1",
        unit="per_1k_chars",
        amount=0.015,
        currency="USD",
        source="OpenAI Pricing",
    ),
    PricingRule(
        id="openai-tts-1-hd",
        service_type="tts",
        template_type="openai",
        model_id="tts-1-hd",
        unit="per_1k_chars",
        amount=0.03,
        currency="USD",
        source="OpenAI Pricing",
    ),
    PricingRule(
        id="openai-gpt4o-mini-tts-estimated",
        service_type="tts",
        template_type="openai",
        model_id="gpt-4o-mini-tts",
        unit="per_minute",
        amount=0.015,
        currency="USD",
        chars_per_minute=750,
        is_estimated=True,
        notes="Billed per token upstream; estimated per minute of speech",
        source="OpenAI Pricing",
    ),
    PricingRule(
        id="qwen-qwen3-tts-flash",
        service_type="tts",
        template_type="qwen",
        model_id="qwen3-tts-flash",
        unit="per_10k_chars",
        amount=0.8,
        currency="CNY",
        source="Alibaba Cloud Model Studio pricing",
    ),
    PricingRule(
        id="minimax-speech-02-turbo",
        service_type="tts",
        template_type="minimax",
        model_id="speech-02-turbo",
        unit="per_10k_chars",
        amount=2,
        currency="CNY",
        source="MiniMax pay-as-you-go",
    ),
    PricingRule(
        id="cartesia-sonic",
        service_type="tts",
        template_type="cartesia",
        unit="per_char",
        amount=0.0000533,
        currency="USD",
        notes="750 USD ~ 18,750 min; 1 min ~ 750 credits (1 credit per char)",
        is_estimated=True,
        source="https://cartesia.ai/pricing",
    ),
    PricingRule(
        id="qwen-paraformer-v2",
        service_type="asr",
        template_type="qwen",
        model_id="paraformer-v2",
        unit="per_second",
        amount=0.00008,
        currency="CNY",
        source="Alibaba Cloud Model Studio pricing",
    ),
]


def find_rule(
    service_type: str,
    provider_id: Optional[str] = None,
    template_type: Optional[str] = None,
    model_id: Optional[str] = None,
) -> Optional[PricingRule]:
    for rule in PRICING_RULES:
        if rule.service_type != service_type:
            continue
        if rule.model_id and rule.model_id != model_id:
            continue
        if rule.template_type and rule.template_type != template_type:
            continue
        if rule.provider_ids and provider_id and provider_id not in rule.provider_ids:
            continue
        return rule
    return None


def _to_usd(amount: float, currency: str) -> Tuple[float, float]:
    if currency == "CNY":
        rate = settings.USD_TO_CNY_RATE
        return amount / rate, rate
    return amount, 1.0


def _usage(
    rule: PricingRule,
    text_length: int = 0,
    duration_seconds: Optional[float] = None,
) -> Tuple[float, Dict[str, Any]]:
    meta: Dict[str, Any] = {}
    if rule.unit in ("per_char", "per_credit"):
        return float(text_length), meta
    if rule.unit == "per_1k_chars":
        return text_length / 1000, meta
    if rule.unit == "per_10k_chars":
        return text_length / 10000, meta
    if rule.unit == "per_minute":
        chars_per_minute = rule.chars_per_minute or 750
        meta["charsPerMinute"] = chars_per_minute
        return text_length / chars_per_minute, meta
    if rule.unit == "per_second":
        if duration_seconds:
            return float(duration_seconds), meta
        if rule.chars_per_second and text_length:
            meta["charsPerSecond"] = rule.chars_per_second
            return text_length / rule.chars_per_second, meta
    return 0.0, meta


def _breakdown(rule: PricingRule, usage: float, meta: Dict[str, Any]) -> CostBreakdown:
    original = usage * rule.amount
    amount_usd, rate = _to_usd(original, rule.currency)
    return CostBreakdown(
        amount_usd=amount_usd,
        original_amount=original,
        original_currency=rule.currency,
        unit=rule.unit,
        usage_amount=usage,
        rule_id=rule.id,
        is_estimated=rule.is_estimated,
        exchange_rate=rate,
        notes=rule.notes,
        meta=meta,
    )


def calculate_tts_cost(
    provider_id: Optional[str],
    template_type: Optional[str],
    model_id: Optional[str],
    text_length: int,
) -> Optional[CostBreakdown]:
    """Cost of synthesizing ``text_length`` characters, or None if unpriced."""
    rule = find_rule("tts", provider_id, template_type, model_id)
    if rule is None:
        return None
    usage, meta = _usage(rule, text_length=text_length)
    return _breakdown(rule, usage, meta)


def calculate_asr_cost(
    provider_id: Optional[str],
    template_type: Optional[str],
    model_id: Optional[str],
    duration_seconds: Optional[float] = None,
    text_length: int = 0,
) -> Optional[CostBreakdown]:
    """Cost of transcribing ``duration_seconds`` of audio, or None if unpriced."""
    rule = find_rule("asr", provider_id, template_type, model_id)
    if rule is None:
        return None
    usage, meta = _usage(rule, text_length=text_length, duration_seconds=duration_seconds)
    return _breakdown(rule, usage, meta)
