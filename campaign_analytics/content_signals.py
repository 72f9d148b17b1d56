"""
content_signals.py — Heuristic AI-content and scaled-content-abuse signals.

A fixed rule table over free text. Each rule that fires adds its weight to
``ai_likelihood`` (capped at 1.0) and appends a line of evidence:

    Rule                      Weight   Fires when
    repetitive patterns       0.15     >30% of sentences share their first three words
    generic language          0.20     stock phrases > 10% of sentence count
    perfect grammar           0.10     few contractions, >10 sentences, little all-caps
    lacks personal voice      0.15     ≤1% first-person words, no opinions, >500 chars
    missing specific details  0.20     no dates/numbers/citations/quotes, >1000 chars
    templated structure       0.10     >5 paragraphs with uniform lengths
    low vocabulary diversity  0.10     <30% unique long words, >200 words
    phrase repetition         0.10     repeated 3-word phrases > 5% of word count

The last two both set the ``low_originality`` flag. The weights are
hand-tuned; there is no calibration data behind them.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 100

GENERIC_PHRASES = [
    "in conclusion",
    "it is important to note",
    "it should be noted",
    "as we can see",
    "it is worth mentioning",
    "in today's world",
    "in the modern era",
    "it goes without saying",
    "without a doubt",
    "it is clear that",
    "one might argue",
    "it is essential to",
    "it is crucial to",
    "it is vital to",
    "it is imperative to",
]

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_CONTRACTIONS = re.compile(
    r"\b(?:i'm|you're|we're|they're|it's|don't|won't|can't|isn't|aren't|wasn't|weren't"
    r"|hasn't|haven't|hadn't|wouldn't|couldn't|shouldn't)\b",
    re.IGNORECASE,
)
_PROPER_NOUNS = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")
_ALL_CAPS = re.compile(r"\b[A-Z]{2,}\b")
_FIRST_PERSON = re.compile(r"\b(?:i|me|my|mine|we|us|our|ours)\b", re.IGNORECASE)
_OPINIONS = re.compile(
    r"\b(?:i think|i believe|in my opinion|i feel|i've noticed|i've found|in my experience)\b",
    re.IGNORECASE,
)
_DATES = re.compile(
    r"\b(?:january|february|march|april|may|june|july|august|september|october|november"
    r"|december|\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}|\d{4})\b",
    re.IGNORECASE,
)
_NUMBERS = re.compile(r"\b\d+[%$]|\b\d+\.\d+|\b\d{4,}\b")
_CITATIONS = re.compile(r"\[?\d+\]?|\([A-Za-z]+\s+et\s+al\.|according to|source:|reference:",
                        re.IGNORECASE)
_QUOTES = re.compile(r"[\"'‘’“”]")


@dataclass
class ContentSignalFlags:
    repetitive_patterns: bool = False
    generic_language: bool = False
    perfect_grammar: bool = False
    lacks_personal_voice: bool = False
    missing_specific_details: bool = False
    templated_structure: bool = False
    low_originality: bool = False

    def count(self) -> int:
        return sum(1 for v in asdict(self).values() if v)


@dataclass
class AIContentSignals:
    """Detector output: score in [0, 1], flags, human-readable evidence."""
    ai_likelihood: float = 0.0
    signals: ContentSignalFlags = field(default_factory=ContentSignalFlags)
    evidence: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScaledContentVerdict:
    is_abuse: bool
    confidence: float
    reasons: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _sentence_start_repeats(sentences: list[str]) -> int:
    starts = Counter(" ".join(s.strip().split()[:3]).lower() for s in sentences)
    return max(starts.values())


def _paragraph_spread(paragraphs: list[str]) -> tuple[float, float]:
    lengths = [len(p) for p in paragraphs]
    avg = sum(lengths) / len(lengths)
    variance = sum((n - avg) ** 2 for n in lengths) / len(lengths)
    return avg, math.sqrt(variance)


def detect_ai_content_signals(content: str) -> AIContentSignals:
    """Score ``content`` for signs of AI-generated or templated writing.

    Text shorter than 100 characters is not scored: the result has
    likelihood 0, no flags and no evidence.
    """
    result = AIContentSignals()
    if not content or len(content) < MIN_CONTENT_CHARS:
        return result

    flags = result.signals
    evidence = result.evidence
    score = 0.0

    words = re.split(r"\s+", content.lower())
    sentences = [s for s in _SENTENCE_SPLIT.split(content) if len(s.strip()) > 10]
    paragraphs = [p for p in _PARAGRAPH_SPLIT.split(content) if len(p.strip()) > 50]

    # Sentence starts
    if len(sentences) > 3:
        max_repeat = _sentence_start_repeats(sentences)
        if max_repeat > len(sentences) * 0.3:
            flags.repetitive_patterns = True
            evidence.append(f"Repetitive sentence starts: {max_repeat} sentences start similarly")
            score += 0.15

    # Stock phrases
    lowered = content.lower()
    generic_count = sum(lowered.count(phrase) for phrase in GENERIC_PHRASES)
    if generic_count > len(sentences) * 0.1:
        flags.generic_language = True
        evidence.append(f"High use of generic phrases: {generic_count} instances")
        score += 0.2

    # Formality
    contraction_count = len(_CONTRACTIONS.findall(content))
    very_formal = contraction_count < len(sentences) * 0.1 and len(sentences) > 5
    proper_nouns = _PROPER_NOUNS.findall(content)
    all_caps = _ALL_CAPS.findall(content)
    natural_variation = len(all_caps) < len(proper_nouns) * 0.2
    if very_formal and natural_variation and len(sentences) > 10:
        flags.perfect_grammar = True
        evidence.append("Overly formal language with minimal contractions (unnatural for human writing)")
        score += 0.1

    # Personal voice
    has_personal_voice = len(_FIRST_PERSON.findall(content)) > len(words) * 0.01
    has_opinions = _OPINIONS.search(content) is not None
    if not has_personal_voice and not has_opinions and len(content) > 500:
        flags.lacks_personal_voice = True
        evidence.append("Lacks first-person perspective or personal opinions")
        score += 0.15

    # Specifics
    has_dates = _DATES.search(content) is not None
    has_numbers = _NUMBERS.search(content) is not None
    has_citations = _CITATIONS.search(content) is not None
    has_quotes = len(_QUOTES.findall(content)) > 2
    if not (has_dates or has_numbers or has_citations or has_quotes) and len(content) > 1000:
        flags.missing_specific_details = True
        evidence.append("Missing specific details: no dates, numbers, citations, or quotes")
        score += 0.2

    # Paragraph uniformity
    if len(paragraphs) > 5:
        avg, std_dev = _paragraph_spread(paragraphs)
        if std_dev < avg * 0.3:
            flags.templated_structure = True
            evidence.append("Very uniform paragraph structure (suggests templating)")
            score += 0.1

    # Vocabulary and phrase repetition
    unique_ratio = len({w for w in words if len(w) > 3}) / len(words)
    trigrams = Counter(" ".join(words[i:i + 3]) for i in range(len(words) - 2))
    repeated_phrases = sum(1 for n in trigrams.values() if n > 2)

    if unique_ratio < 0.3 and len(words) > 200:
        flags.low_originality = True
        evidence.append(f"Low vocabulary diversity: {unique_ratio * 100:.1f}% unique words")
        score += 0.1

    if repeated_phrases > len(words) * 0.05:
        flags.low_originality = True
        evidence.append(f"High phrase repetition: {repeated_phrases} repeated 3-word phrases")
        score += 0.1

    result.ai_likelihood = min(1.0, score)
    logger.debug("AI likelihood %.2f (%d signals)", result.ai_likelihood, flags.count())
    return result


def detect_scaled_content_abuse(content: str, word_count: int) -> ScaledContentVerdict:
    """Combine the AI signals with length and template checks.

    Content is treated as abuse when the combined confidence exceeds 0.5.
    """
    ai = detect_ai_content_signals(content)
    reasons: list[str] = []
    confidence = 0.0

    if word_count < 300:
        reasons.append("Very short content (<300 words)")
        confidence += 0.2

    if ai.ai_likelihood > 0.5:
        reasons.append(f"High AI content likelihood: {ai.ai_likelihood * 100:.0f}%")
        confidence += ai.ai_likelihood * 0.4
        reasons.extend(ai.evidence)

    signal_count = ai.signals.count()
    if signal_count >= 3:
        reasons.append(f"Multiple AI content signals detected: {signal_count}")
        confidence += 0.2

    if ai.signals.templated_structure and ai.signals.generic_language:
        reasons.append("Templated structure with generic language (classic scaled content pattern)")
        confidence += 0.2

    confidence = min(1.0, confidence)
    return ScaledContentVerdict(is_abuse=confidence > 0.5, confidence=confidence, reasons=reasons)
