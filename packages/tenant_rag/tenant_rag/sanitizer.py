"""Input sanitization and prompt-injection screening.

Everything that ends up inside a prompt passes through :class:`Sanitizer`
first: user questions, document titles and document content. Detection is
driven by an ordered catalogue of compiled :class:`InjectionRule` objects so
new patterns are data, not code.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from .audit import AuditSink, NullAuditSink


class SanitizeKind(str, Enum):
    USER_QUESTION = "user_question"
    DOCUMENT_CONTENT = "document_content"
    DOCUMENT_TITLE = "document_title"


MAX_LENGTHS: Dict[SanitizeKind, int] = {
    SanitizeKind.USER_QUESTION: 2000,
    SanitizeKind.DOCUMENT_TITLE: 500,
    SanitizeKind.DOCUMENT_CONTENT: 2_000_000,
}

TRUNCATION_MARKER = "..."


@dataclass(frozen=True)
class InjectionRule:
    tag: str
    category: str
    pattern: Pattern[str]


def _rule(tag: str, category: str, pattern: str) -> InjectionRule:
    return InjectionRule(tag=tag, category=category, pattern=re.compile(pattern, re.IGNORECASE))


DEFAULT_RULES: Tuple[InjectionRule, ...] = (
    _rule(
        "ignore_previous",
        "instruction_override",
        r"ignore\s+(all\s+)?(previous|prior|above|earlier)\s+(instructions?|prompts?|rules?|context)",
    ),
    _rule(
        "disregard_previous",
        "instruction_override",
        r"disregard\s+(all\s+)?(previous|prior|above|your)\s+(instructions?|prompts?|rules?)",
    ),
    _rule(
        "forget_instructions",
        "instruction_override",
        r"forget\s+(everything|all|your)\s+(you|instructions?|rules?|know)",
    ),
    _rule("new_instructions", "instruction_override", r"new\s+instructions?\s*:"),
    _rule("override_rules", "instruction_override", r"override\s+(your|the|all)\s+(rules?|instructions?|settings?)"),
    _rule("you_are_now", "role_reassignment", r"you\s+are\s+(now|actually|really)\s+(a|an|the)\b"),
    _rule("pretend", "role_reassignment", r"pretend\s+(to\s+be|you\s+are|that)"),
    _rule("act_as", "role_reassignment", r"\bact\s+as\s+(if\s+you('re|\s+are)|a|an)\b"),
    _rule("roleplay", "role_reassignment", r"role\s*-?\s*play\s+as"),
    _rule("switch_mode", "role_reassignment", r"switch\s+to\s+\w+\s+mode"),
    _rule(
        "reveal_prompt",
        "prompt_extraction",
        r"(reveal|show|display|print|output)\s+(me\s+)?(your|the)\s+(system\s+)?(prompt|instructions?)",
    ),
    _rule(
        "what_are_instructions",
        "prompt_extraction",
        r"what\s+(are|were)\s+your\s+(original\s+)?(instructions?|rules?|system\s+prompt)",
    ),
    _rule("repeat_above", "prompt_extraction", r"repeat\s+(the\s+)?(text|words|everything)\s+above"),
    _rule("boundary_open", "boundary_spoofing", r"<<<\s*(system|instruction|end|user|context)"),
    _rule("boundary_close", "boundary_spoofing", r">>>\s*(system|instruction|end|user|context)"),
    _rule("bracket_system", "boundary_spoofing", r"\[\[\s*system\s*\]\]"),
    _rule("heading_system", "boundary_spoofing", r"(^|\n)[ \t]*#{1,6}\s*system\b"),
    _rule("xml_system", "boundary_spoofing", r"</?\s*(system|instructions?)\s*>"),
    _rule("exec_call", "code_execution", r"\b(exec|eval)\s*\("),
    _rule("import_os", "code_execution", r"\bimport\s+(os|subprocess|sys)\b"),
    _rule("subprocess", "code_execution", r"\bsubprocess\.\w+"),
    _rule("dunder_import", "code_execution", r"__import__\s*\("),
    _rule("jailbreak", "jailbreak", r"\bjailbreak"),
    _rule("dan_mode", "jailbreak", r"\bdan\s+mode\b|\bdo\s+anything\s+now\b"),
    _rule("developer_mode", "jailbreak", r"developer\s+mode\s+(enabled|on|activated)"),
    _rule("no_restrictions", "jailbreak", r"without\s+(any\s+)?(restrictions|limitations|filters|guidelines)"),
)

# (pattern, replacement) pairs applied in order before truncation.
_ESCAPES: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"<<<+"), "< < <"),
    (re.compile(r">>>+"), "> > >"),
    (re.compile(r"^(#{1,6})\s*(system|instructions?|prompt|rules?)\b", re.IGNORECASE | re.MULTILINE), r"(heading) \2"),
    (re.compile(r"<\s*/?\s*(system|instructions?|prompt)\s*>", re.IGNORECASE), r"[\1]"),
    (re.compile(r"\[\[\s*(system|instructions?)\s*\]\]", re.IGNORECASE), r"[\1]"),
    (re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]"), ""),
    (re.compile(r"[ \t]{10,}"), "    "),
    (re.compile(r"\n{5,}"), "\n\n\n"),
)

_SPECIAL_CHARS = re.compile(r"[<>{}\[\]\\|`~^]")
_CODE_TOKENS = re.compile(r"\b(function|const|let|var|import|export|class|def|return|lambda)\b")
_QUESTION_START = re.compile(
    r"^(what|how|why|when|where|who|which|is|are|can|could|does|do|did|will|would|should|has|have)\b",
    re.IGNORECASE,
)


@dataclass
class SanitizeResult:
    sanitized: str
    original: str
    truncated: bool = False
    injection_detected: bool = False
    patterns: List[str] = field(default_factory=list)


@dataclass
class Legitimacy:
    score: float
    reasons: List[str] = field(default_factory=list)


@dataclass
class BlockDecision:
    block: bool
    reason: Optional[str] = None


class Sanitizer:
    def __init__(
        self,
        rules: Sequence[InjectionRule] = DEFAULT_RULES,
        *,
        max_lengths: Optional[Dict[SanitizeKind, int]] = None,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.rules = tuple(rules)
        self.max_lengths = {**MAX_LENGTHS, **(max_lengths or {})}
        self.audit = audit or NullAuditSink()

    def detect(self, text: str) -> List[str]:
        """Return the tags of every rule matching ``text`` in catalogue order."""

        return [rule.tag for rule in self.rules if rule.pattern.search(text)]

    def sanitize(self, text: str, kind: SanitizeKind) -> SanitizeResult:
        original = text or ""
        working = original.strip()
        patterns = self.detect(working)
        if patterns:
            self.audit.emit("injection_patterns_detected", kind=kind.value, patterns=patterns)

        for pattern, replacement in _ESCAPES:
            working = pattern.sub(replacement, working)
        working = working.strip()

        working, truncated = truncate_at_word_boundary(working, self.max_lengths[kind])
        return SanitizeResult(
            sanitized=working,
            original=original,
            truncated=truncated,
            injection_detected=bool(patterns),
            patterns=patterns,
        )

    def assess_legitimacy(self, text: str) -> Legitimacy:
        score = 1.0
        reasons: List[str] = []
        stripped = (text or "").strip()
        max_length = self.max_lengths[SanitizeKind.USER_QUESTION]

        patterns = self.detect(stripped)
        if patterns:
            score -= 0.3 * min(len(patterns), 3)
            reasons.append(f"injection patterns: {', '.join(patterns)}")

        if stripped:
            density = len(_SPECIAL_CHARS.findall(stripped)) / len(stripped)
            if density > 0.1:
                score -= 0.2
                reasons.append("high special character density")

        if len(stripped) > max_length * 0.8:
            score -= 0.1
            reasons.append("near maximum length")

        if len(_CODE_TOKENS.findall(stripped)) > 2:
            score -= 0.15
            reasons.append("code-like content")

        if _QUESTION_START.match(stripped) or "?" in stripped:
            score += 0.1

        return Legitimacy(score=min(1.0, max(0.0, round(score, 4))), reasons=reasons)

    def should_block(self, text: str) -> BlockDecision:
        stripped = (text or "").strip()
        max_length = self.max_lengths[SanitizeKind.USER_QUESTION]
        if not stripped:
            return BlockDecision(block=True, reason="Question must not be empty")
        if len(stripped) > max_length * 2:
            return BlockDecision(block=True, reason=f"Question exceeds {max_length * 2} characters")

        legitimacy = self.assess_legitimacy(stripped)
        if legitimacy.score < 0.3:
            self.audit.emit("input_blocked", score=legitimacy.score, reasons=legitimacy.reasons)
            return BlockDecision(block=True, reason="Question was rejected by the input safety filter")
        if legitimacy.score < 0.5:
            self.audit.emit("suspicious_input", score=legitimacy.score, reasons=legitimacy.reasons)
        return BlockDecision(block=False)


def truncate_at_word_boundary(text: str, max_length: int) -> Tuple[str, bool]:
    if len(text) <= max_length:
        return text, False
    budget = max(max_length - len(TRUNCATION_MARKER), 0)
    head = text[:budget]
    cut = head.rfind(" ")
    if cut > budget * 0.8:
        head = head[:cut]
    return head.rstrip() + TRUNCATION_MARKER, True
