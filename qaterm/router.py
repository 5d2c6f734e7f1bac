"""Query routing between the light and powerful model tiers.

A question first goes through a fixed set of phrasing patterns. Anything
that is not an obvious file or terminal request is then sent once to the
light model for a SIMPLE/COMPLEX verdict. Failures fall toward the
powerful tier.
"""

import logging
import re
from dataclasses import dataclass, field

from .errors import ClassificationParseError, ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

LIGHT = "light"
POWERFUL = "powerful"

_PATH = r"(?:\/[\w\s'\".()-]+)+"

_PATTERN_GROUPS: list[tuple[str, float, list[str]]] = [
    (
        "listing",
        0.95,
        [
            r"list (?:the )?(?:files|directories|contents|items) in",
            r"show (?:the )?(?:files|directories|contents|items) in",
            r"what(?:'s| is) in (?:the )?(?:directory|folder|path)",
            r"display (?:the )?content(?:s)? of (?:the )?(?:directory|folder|path)",
            rf"ls .*{_PATH}",
            rf"dir .*{_PATH}",
            r"please list out",
            r"can you list",
            r"show me the files",
            r"what files are in",
            r"what's inside",
            r"list files",
            r"list directories",
            r"list items",
        ],
    ),
    (
        "read",
        0.9,
        [
            r"(?:read|open|show|display|cat) (?:the )?(?:file|content(?:s)? of) ['\"]?[\w\s\/\.-]+['\"]?",
            r"what(?:'s| is) in (?:the )?file",
            rf"cat .*{_PATH}",
            r"what's the content of",
            r"show me the content(?:s)? of",
        ],
    ),
    (
        "write",
        0.9,
        [
            r"(?:write|save|create) (?:to )?(?:the )?file",
            r"make a (?:new )?file",
            rf"touch .*{_PATH}",
            r"create a new file",
            r"add content to (?:the )?file",
        ],
    ),
    (
        "terminal",
        0.9,
        [
            r"run (?:the )?command",
            r"execute (?:the )?command",
            r"can you run",
            r"please run",
            r"please execute",
        ],
    ),
]

DIRECT_COMMAND_PATTERNS: list[tuple[str, float, list[re.Pattern]]] = [
    (category, confidence, [re.compile(p, re.IGNORECASE) for p in patterns])
    for category, confidence, patterns in _PATTERN_GROUPS
]

PATH_LIKE = re.compile(_PATH)
PATH_HEURISTIC_CONFIDENCE = 0.8
PATH_HEURISTIC_MAX_WORDS = 10

CLASSIFIER_SYSTEM_PROMPT = "You are a helpful query classifier."

CLASSIFIER_PROMPT = """
You are a query classifier AI. Your task is to determine if the following query requires a powerful AI model.

Complex queries that need powerful models:
1. Coding tasks or programming questions
2. Deep research questions requiring comprehensive knowledge
3. Queries asking for detailed analysis of complex subjects
4. Requests for creative content like stories, poems, or detailed content
5. Web search related questions or requests for current information
6. Multi-step reasoning problems

Simple queries that lightweight models can handle:
1. Basic factual questions
2. Simple definitions
3. Straightforward opinions
4. Basic instructions or how-to questions
5. Simple conversational replies
6. Clarification questions
7. File system operations like listing directories, reading files, etc.
8. Basic terminal commands
9. Requests to show or display information

User query: "{question}"

IMPORTANT: If the query is asking to list files, show directory contents, read a file, or execute a simple command, classify it as SIMPLE.

First, analyze the complexity of this query. Then output ONLY ONE of these classifications:
- SIMPLE (can be handled by a lightweight model)
- COMPLEX (should be routed to a powerful model)

Also provide a confidence score between 0 and 1 for your classification.

Output format:
CLASSIFICATION: [SIMPLE or COMPLEX]
CONFIDENCE: [0.0-1.0]
"""

_CLASSIFICATION_RE = re.compile(r"CLASSIFICATION:\s*(SIMPLE|COMPLEX)", re.IGNORECASE)
_CONFIDENCE_RE = re.compile(r"CONFIDENCE:\s*([0-9]\.[0-9]+)", re.IGNORECASE)

REASONING_INSTRUCTION = (
    "In this task, I want you to use multi-step reasoning to solve complex problems. "
    "First, break down the problem into smaller parts. Then, tackle each part "
    "systematically. Consider multiple approaches and evaluate them. Generate "
    "intermediate insights before your final answer."
)
FIRST_REASONING_PROMPT = (
    "Think step-by-step about this problem. "
    "What are the key components we need to understand?"
)
REFINE_REASONING_PROMPT = (
    "Based on your previous analysis, refine your thinking. Consider if there are "
    "any gaps, errors, or alternative perspectives. Iteration {n}/{total}."
)
FINAL_REASONING_PROMPT = (
    "Based on all your reasoning steps, provide a concise and complete final "
    "answer to the original question."
)


@dataclass
class Classification:
    is_complex: bool
    confidence: float
    is_direct_command: bool = False
    category: str | None = None


@dataclass
class RouteDecision:
    tier: str
    classification: Classification | None
    skip_reasoning: bool
    reason: str


@dataclass
class ReasoningResult:
    final: str
    intermediate: list[str] = field(default_factory=list)


def is_direct_command(question: str) -> Classification:
    """Match the question against the fixed phrasing patterns.

    Groups are tried in order (listing, read, write, terminal) and the first
    hit wins. A short question holding a path-like substring is a direct
    command too, with lower confidence.
    """
    for category, confidence, patterns in DIRECT_COMMAND_PATTERNS:
        for pattern in patterns:
            if pattern.search(question):
                return Classification(False, confidence, True, category)

    if PATH_LIKE.search(question) and (
        len(question.split(" ")) < PATH_HEURISTIC_MAX_WORDS
    ):
        return Classification(False, PATH_HEURISTIC_CONFIDENCE, True, "path-operation")

    return Classification(True, 0.0, False, None)


def parse_classification(text: str) -> Classification:
    """Parse a classifier reply.

    Missing pieces keep their defaults (COMPLEX, 1.0). Raises
    ClassificationParseError when neither line is present.
    """
    class_match = _CLASSIFICATION_RE.search(text or "")
    conf_match = _CONFIDENCE_RE.search(text or "")
    if class_match is None and conf_match is None:
        raise ClassificationParseError(f"unrecognized classifier reply: {text!r}")

    is_complex = True
    confidence = 1.0
    if class_match:
        is_complex = class_match.group(1).upper() == "COMPLEX"
    if conf_match:
        confidence = float(conf_match.group(1))
    return Classification(is_complex, confidence)


def classify_query(question: str, complete, light_model: str) -> Classification:
    """Classify a question, asking the light model only when no pattern matches."""
    direct = is_direct_command(question)
    if direct.is_direct_command:
        return direct

    messages = [
        {"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT},
        {"role": "user", "content": CLASSIFIER_PROMPT.format(question=question)},
    ]
    try:
        reply = complete(light_model, messages, temperature=0.1, max_tokens=100)
        return parse_classification(reply)
    except (ProviderError, ProviderUnavailable, ClassificationParseError) as e:
        logger.debug("classification failed, defaulting to complex: %s", e)
        return Classification(True, 1.0)


def choose_tier(classification: Classification, threshold: float) -> RouteDecision:
    """Turn a classification into a tier decision."""
    c = classification
    if c.is_direct_command:
        return RouteDecision(
            LIGHT,
            c,
            True,
            f"Using lightweight model for direct command (confidence: {c.confidence:.2f})",
        )
    if not c.is_complex and c.confidence >= threshold:
        return RouteDecision(
            LIGHT, c, True, f"Using lightweight model (confidence: {c.confidence:.2f})"
        )
    if c.is_complex and c.confidence >= threshold:
        return RouteDecision(
            POWERFUL,
            c,
            False,
            f"Using powerful model for complex query (confidence: {c.confidence:.2f})",
        )
    return RouteDecision(
        POWERFUL,
        c,
        False,
        f"Defaulting to powerful model (low classification confidence: {c.confidence:.2f})",
    )


def route_query(question: str, settings, complete) -> RouteDecision:
    classification = classify_query(question, complete, settings.light_model)
    decision = choose_tier(classification, settings.routing_threshold)
    logger.debug("routed to %s: %s", decision.tier, decision.reason)
    return decision


def apply_reasoning(messages: list[dict], complete, model: str, iterations: int):
    """Run the bounded self-refinement loop and a final summarization turn.

    messages must end with the user's question; it is not modified. Each
    turn waits for the previous reply before the next prompt is sent.
    """
    context = [dict(m) for m in messages]
    for m in context:
        if m["role"] == "system":
            m["content"] = f"{m['content']} {REASONING_INSTRUCTION}"
            break

    intermediate = []
    for i in range(iterations):
        if i == 0:
            prompt = FIRST_REASONING_PROMPT
        else:
            prompt = REFINE_REASONING_PROMPT.format(n=i + 1, total=iterations)
        context.append({"role": "user", "content": prompt})
        reply = complete(model, context, temperature=0.7)
        context.append({"role": "assistant", "content": reply})
        intermediate.append(reply)

    context.append({"role": "user", "content": FINAL_REASONING_PROMPT})
    final = complete(model, context, temperature=0.7)
    return ReasoningResult(final, intermediate)
