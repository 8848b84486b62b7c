"""
Text helpers for model output: summary extraction and plain-text cleanup.

A reading returned by the model is free text that was asked to carry a short
"shareable summary". ``extract_envelope`` separates the two with an ordered
list of rules:

1. ``MarkerRule``: an explicit "Shareable Summary:" label at the start of a line.
2. ``StarterParagraphRule``: the last paragraph opening with a configured phrase.
3. The configured default summary, with the raw text kept as the primary content.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK_RE = re.compile(r'\n[ \t]*\n')
_EXTRA_NEWLINES_RE = re.compile(r'\n{3,}')
_BLANK_LINE_RE = re.compile(r'[ \t]*(?:\n|$)')
_EMPHASIS_CHARS = '*_"“”\'‘’ \t'

_MD_HEADER_RE = re.compile(r'^\s*#{1,6}\s*(.+?)$', re.MULTILINE)
_MD_BOLD_ASTERISK_RE = re.compile(r'\*\*(.+?)\*\*')
_MD_BOLD_UNDERSCORE_RE = re.compile(r'__(.+?)__')
_MD_ITALIC_ASTERISK_RE = re.compile(r'(?<!\w)\*([^*\n]+?)\*(?!\w)')
_MD_ITALIC_UNDERSCORE_RE = re.compile(r'(?<!\w)_([^_\n]+?)_(?!\w)')
_MD_BULLET_RE = re.compile(r'^\s*[-*•]\s+', re.MULTILINE)
_MD_BLOCKQUOTE_RE = re.compile(r'^\s*>\s?', re.MULTILINE)
_MD_RULE_RE = re.compile(r'^\s*[-—–]{2,}\s*$', re.MULTILINE)
_MD_CODE_BLOCK_RE = re.compile(r'```.*?```', re.DOTALL)
_MD_INLINE_CODE_RE = re.compile(r'`([^`]+)`')
_HTML_TAG_RE = re.compile(r'<[^>]+>')

_PILLAR_LINE_RE = {
    name: re.compile(rf'{name} Pillar:\s*(.*?)(?:\n|$)')
    for name in ("Year", "Month", "Day", "Hour")
}
NOT_SPECIFIED = "Not specified"


@dataclass
class Envelope:
    """A reading split into the main text and a short summary fit for sharing."""

    primary_content: str
    shareable_summary: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_content": self.primary_content,
            "shareable_summary": self.shareable_summary,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        return cls(
            primary_content=data["primary_content"],
            shareable_summary=data["shareable_summary"],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class ExtractionConfig:
    """What one reading type asks the model for, and what to fall back to."""

    marker_labels: Tuple[str, ...]
    starters: Tuple[str, ...]
    default_summary: str
    use_marker: bool = True


SHAREABLE_SUMMARY_LABELS = ("Shareable Summary", "分享摘要", "สรุปสำหรับแชร์")

SOLO = ExtractionConfig(
    marker_labels=SHAREABLE_SUMMARY_LABELS,
    starters=("A ", "An "),
    default_summary="A balanced individual with natural leadership qualities, combining wisdom with adaptability.",
)

COMPATIBILITY = ExtractionConfig(
    marker_labels=SHAREABLE_SUMMARY_LABELS,
    starters=("You and your partner show", "Your relationship demonstrates"),
    default_summary="You and your partner show balanced compatibility with complementary strengths and areas for growth.",
)

DAILY = ExtractionConfig(
    marker_labels=SHAREABLE_SUMMARY_LABELS,
    starters=("Let ", "让", "ให้"),
    default_summary="Let the steady flow of Fire guide your actions today.",
)

PERSONAL = ExtractionConfig(
    marker_labels=SHAREABLE_SUMMARY_LABELS,
    starters=(),
    default_summary="Move with today's energy: stay mindful, patient and open to collaboration.",
)


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines, dropping empty paragraphs."""
    return [p.strip() for p in _PARAGRAPH_BREAK_RE.split(text) if p.strip()]


def _tidy(text: str) -> str:
    return _EXTRA_NEWLINES_RE.sub('\n\n', text).strip()


def _strip_emphasis(text: str) -> str:
    return text.strip(_EMPHASIS_CHARS)


class MarkerRule:
    """
    Take the text after a labelled summary heading, up to the next blank line.

    A label with nothing after it ends extraction with ``default_summary`` when
    one is given, so later rules never guess a summary for that text.
    """

    name = "marker"

    def __init__(self, labels: Iterable[str], default_summary: Optional[str] = None):
        self._default_summary = default_summary
        alternatives = "|".join(re.escape(label) for label in labels)
        # The label must open a line (optionally as a heading or in bold) and be
        # followed by a colon or the end of that line.
        self._pattern = re.compile(
            r'^[ \t]*(?:#{1,6}[ \t]*)?(?:\*\*|__)?[ \t]*'
            rf'(?:{alternatives})'
            r'(?:[ \t]*(?:\*\*|__)?[ \t]*[:：][ \t]*(?:\*\*|__)?|[ \t]*(?:\*\*|__)?[ \t]*(?=\n|$))',
            re.IGNORECASE | re.MULTILINE,
        )

    def apply(self, raw: str) -> Optional[Envelope]:
        match = self._pattern.search(raw)
        if not match:
            return None

        rest_start = match.end()
        while rest_start < len(raw) and raw[rest_start] in ' \t':
            rest_start += 1
        # Heading form: the summary starts on the line after the label.
        if raw.startswith('\n', rest_start):
            rest_start += 1
            if _BLANK_LINE_RE.match(raw, rest_start):
                return self._empty_marker(raw)

        rest = raw[rest_start:]
        brk = _PARAGRAPH_BREAK_RE.search(rest)
        captured_end = rest_start + (brk.start() if brk else len(rest))
        summary = raw[rest_start:captured_end].strip()
        if not summary:
            return self._empty_marker(raw)

        primary = _tidy(raw[:match.start()] + raw[captured_end:])
        if summary in primary:
            return None
        return Envelope(primary_content=primary, shareable_summary=summary)

    def _empty_marker(self, raw: str) -> Optional[Envelope]:
        if self._default_summary is None:
            return None
        logger.info("ExtractionAmbiguity: summary label has no content, using default")
        return Envelope(primary_content=raw, shareable_summary=self._default_summary)


class StarterParagraphRule:
    """Pick the last paragraph that opens with one of the configured phrases."""

    name = "starter"

    def __init__(self, starters: Sequence[str]):
        self._starters = tuple(starters)

    def apply(self, raw: str) -> Optional[Envelope]:
        if not self._starters:
            return None
        paragraphs = split_paragraphs(raw)
        if len(paragraphs) < 2:
            return None

        for index in range(len(paragraphs) - 1, -1, -1):
            candidate = paragraphs[index].lstrip(_EMPHASIS_CHARS)
            if not candidate.startswith(self._starters):
                continue
            summary = _strip_emphasis(paragraphs[index])
            primary = "\n\n".join(p for i, p in enumerate(paragraphs) if i != index)
            if not summary or summary in primary:
                return None
            return Envelope(primary_content=primary, shareable_summary=summary)
        return None


def build_rules(config: ExtractionConfig) -> list:
    rules = []
    if config.use_marker and config.marker_labels:
        rules.append(MarkerRule(config.marker_labels, config.default_summary))
    rules.append(StarterParagraphRule(config.starters))
    return rules


def extract_envelope(raw: str, config: ExtractionConfig) -> Envelope:
    """
    Split raw model output into primary content and a shareable summary.

    Pure and deterministic: the same text and config always give the same envelope.
    When no rule finds a distinct summary the configured default is used and the
    primary content is the raw text, unmodified.
    """
    raw = raw or ""
    for rule in build_rules(config):
        envelope = rule.apply(raw)
        if envelope is not None:
            logger.debug("Shareable summary found by %s rule", rule.name)
            return envelope

    logger.info("ExtractionAmbiguity: no shareable summary found, using default")
    return Envelope(primary_content=raw, shareable_summary=config.default_summary)


def split_headline(raw: str, prefix_patterns: Sequence[re.Pattern] = (), default: str = "") -> Tuple[str, str]:
    """
    Return ``(first_line, remaining_text)``, with known prefixes stripped from
    the first line. An empty first line yields ``default``.
    """
    lines = (raw or "").strip().split('\n')
    headline = lines[0].strip()
    for pattern in prefix_patterns:
        headline = pattern.sub('', headline)
    headline = _strip_emphasis(headline) or default
    return headline, '\n'.join(lines[1:]).strip()


def extract_pillars(text: str) -> Dict[str, str]:
    """Pull ``Year Pillar: ...`` style lines out of a reading."""
    pillars = {}
    for name, pattern in _PILLAR_LINE_RE.items():
        match = pattern.search(text or "")
        value = match.group(1).strip() if match else ""
        pillars[f"{name.lower()}_pillar"] = _strip_emphasis(value) or NOT_SPECIFIED
    return pillars


def strip_markdown(text: str) -> str:
    """Remove bold/italic markers the model adds despite being asked not to."""
    if not text:
        return text
    text = _MD_BOLD_ASTERISK_RE.sub(r'\1', text)
    text = _MD_BOLD_UNDERSCORE_RE.sub(r'\1', text)
    text = _MD_ITALIC_ASTERISK_RE.sub(r'\1', text)
    text = _MD_ITALIC_UNDERSCORE_RE.sub(r'\1', text)
    return text


def clean_text_for_card(text: str) -> str:
    """
    Reduce markdown to plain text for the share card.
    Keeps paragraph breaks, drops symbols SVG fonts render poorly.
    """
    if not text:
        return text

    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = _HTML_TAG_RE.sub('', text)

    filtered_chars = []
    for ch in text:
        category = unicodedata.category(ch)
        if category in ("So", "Sk", "Cs") or ch in ("\ufe0f", "\u200d"):
            continue
        filtered_chars.append(ch)
    text = "".join(filtered_chars)
    text = text.replace('\ufeff', '').replace('\u200b', '').replace('\u2060', '')
    text = text.replace('\u3000', ' ')

    text = _MD_CODE_BLOCK_RE.sub('', text)
    text = _MD_RULE_RE.sub('', text)
    text = _MD_BLOCKQUOTE_RE.sub('', text)
    text = _MD_INLINE_CODE_RE.sub(r'\1', text)
    text = _MD_HEADER_RE.sub(r'\1', text)
    text = strip_markdown(text)
    text = _MD_BULLET_RE.sub('· ', text)

    lines = [re.sub(r'[ \t]+', ' ', line).strip() for line in text.split('\n')]
    return _tidy('\n'.join(lines))
