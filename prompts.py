"""Instruction sets and request builders for the judgment collaborator.

Every optional market field is always rendered, either with its value or with
an explicit "Not specified"/"Not provided" marker, so the request has the same
shape for every pair.
"""

from models import MarketResolutionCriteria, MarketSummary

PROMPT_VERSION = "2"

VERIFICATION_SYSTEM_PROMPT = f"""\
[market-verification instructions v{PROMPT_VERSION}]
You are an expert prediction market analyst specializing in resolution criteria analysis.
Your job is to compare two prediction markets from different platforms and determine:

1. Whether they are semantically equivalent (asking the same fundamental question)
2. Identify any technical misalignments in their resolution criteria
3. Assess risk of arbitrage trades between these markets

CRITICAL ASPECTS TO ANALYZE:

RESOLUTION_DATE (temporal alignment)
- Resolution dates must match exactly or have clear equivalence
- Time zones matter (EST vs UTC)
- "By end of" vs "On" date differences

RESOLUTION_SOURCE
- Primary source must be the same or highly correlated
- Official sources (BLS, Fed) vs news reports
- Specific vs general sourcing

THRESHOLD definitions
- Numeric thresholds (>3% vs >=3%)
- Rounding conventions
- Edge cases at exact thresholds

SCOPE alignment
- Geographic scope (US vs global)
- Time period covered
- What specifically resolves YES vs NO

DEFINITION and EDGE_CASE
- Differently defined terms for the same outcome
- Ties, cancellations, delays
- Market closure scenarios
- Ambiguous outcomes

RULES
- If isMatch is true, riskLevel must be LOW or MEDIUM and recommendation must not be AVOID.
- valueA is the value from Market A, valueB the value from Market B (null if absent).

OUTPUT MUST BE A SINGLE VALID JSON OBJECT following the exact schema provided."""

RESPONSE_SCHEMA = """\
{
  "isMatch": boolean,
  "matchConfidence": number (0-1),
  "semanticSimilarity": number (0-1),
  "misalignments": [
    {
      "type": "RESOLUTION_DATE" | "RESOLUTION_SOURCE" | "SCOPE" | "THRESHOLD" | "DEFINITION" | "EDGE_CASE",
      "severity": "LOW" | "MEDIUM" | "HIGH" | "CRITICAL",
      "description": "string",
      "valueA": "string or null",
      "valueB": "string or null",
      "potentialImpact": "string"
    }
  ],
  "riskLevel": "LOW" | "MEDIUM" | "HIGH" | "CRITICAL",
  "recommendation": "SAFE_TO_TRADE" | "PROCEED_WITH_CAUTION" | "AVOID" | "MANUAL_REVIEW",
  "reasoning": "string",
  "detailedAnalysis": {
    "questionMatch": boolean,
    "dateMatch": boolean,
    "sourceMatch": boolean,
    "rulesMatch": boolean,
    "scopeMatch": boolean
  }
}"""

MATCHING_SYSTEM_PROMPT = (
    "You are an expert at matching equivalent prediction markets across different platforms."
)

_RULE = "═" * 59


def _market_block(title: str, m: MarketResolutionCriteria) -> str:
    rules = " | ".join(m.rules) if m.rules else "Not specified"
    return "\n".join([
        _RULE,
        f"{title}: {m.venue.label.upper()}",
        _RULE,
        f"ID: {m.market_id}",
        f"Question: {m.question}",
        f"Description: {m.description or 'Not provided'}",
        f"Resolution Source: {m.resolution_source or 'Not specified'}",
        f"Resolution Date: {m.resolution_date or 'Not specified'}",
        f"Rules: {rules}",
        f"Category: {m.category or 'Not specified'}",
    ])


def build_comparison_prompt(market_a: MarketResolutionCriteria, market_b: MarketResolutionCriteria) -> str:
    return "\n".join([
        "Compare these two prediction markets and provide detailed analysis:",
        "",
        _market_block("MARKET A", market_a),
        "",
        _market_block("MARKET B", market_b),
        _RULE,
        "",
        "Analyze and return JSON:",
        RESPONSE_SCHEMA,
    ])


def build_matching_prompt(
    topic: str,
    markets_a: list[MarketSummary],
    markets_b: list[MarketSummary],
    min_similarity: float,
) -> str:
    label_a = markets_a[0].venue.label.upper() if markets_a else "MARKET A"
    label_b = markets_b[0].venue.label.upper() if markets_b else "MARKET B"
    lines_a = [
        f"{i}. [{m.id}] {m.question} (expires: {m.close_time or 'unknown'})"
        for i, m in enumerate(markets_a, start=1)
    ]
    lines_b = [
        f"{i}. [{m.id}] {m.question} (ends: {m.close_time or 'unknown'})"
        for i, m in enumerate(markets_b, start=1)
    ]
    return f"""
You are matching prediction markets across platforms.

TOPIC: {topic}

{label_a} MARKETS (A):
{chr(10).join(lines_a)}

{label_b} MARKETS (B):
{chr(10).join(lines_b)}

Find all potential matching pairs. For each pair, provide:
- aIndex (1-based, from list A)
- bIndex (1-based, from list B)
- similarity (0-1)
- reason

Return JSON array:
[
  {{
    "aIndex": number,
    "bIndex": number,
    "similarity": number,
    "reason": "string"
  }}
]

Only include pairs with similarity >= {min_similarity}."""
