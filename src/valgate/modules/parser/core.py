"""Parser module: turn a task definition document into a ValidationTaskDescriptor.

The grammar is tolerant: a title (``# ...``), an optional ``## Purpose``
section, numbered section headings (``### 1. Title``), and bullet criteria
shaped ``Category: description``. Bullets that do not fit the shape become a
single generic point instead of aborting the document. Only a missing title
or a document with no numbered sections is a hard failure.

``render_descriptor`` writes a descriptor back in the same grammar with
explicit ``{weight=..., type=...}`` annotations so that parsing the rendered
text yields an equal descriptor.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from valgate.domain.errors import DescriptorParseError
from valgate.domain.models import (
    PointType,
    Section,
    ValidationPoint,
    ValidationTaskDescriptor,
)
from valgate.modules.scoring.core import PACKAGE_PATTERN, ScoringPolicy

logger = logging.getLogger("valgate.parser")

_TITLE_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$")
_HEADING_RE = re.compile(r"^(#{2,6})\s+(.+?)\s*#*\s*$")
_NUMBERED_RE = re.compile(r"^(\d+)[.)]\s+(.+)$")
_BULLET_RE = re.compile(r"^\s*[-*+]\s+(?:\[[ xX]\]\s+)?(.*\S)\s*$")
_POINT_RE = re.compile(r"^(?P<category>[^:\s][^:]{0,59}?)\s*:\s*(?P<description>.+)$")
_BOLD_LEAD_RE = re.compile(r"^(\*\*|__)(?P<inner>[^*_]+?)\1")
_ANNOTATION_RE = re.compile(r"\s*\{(?P<body>[^{}]*)\}\s*$")

_PURPOSE_HEADINGS = frozenset({"purpose", "overview", "objective"})
_REQUIREMENT_HEADINGS = frozenset({"requirements", "prerequisites", "dependencies"})

# Requirement bullet key → descriptor field.
_REQUIREMENT_KEYS: dict[str, str] = {
    "package": "packages",
    "packages": "packages",
    "platform": "platforms",
    "platforms": "platforms",
    "depends-on": "depends_on",
    "depends on": "depends_on",
    "dependency": "depends_on",
    "incompatible": "incompatible_platforms",
    "exclude-platform": "incompatible_platforms",
    "runtime": "runtime",
}

# Platform keyword heuristics: (pattern, platform). Patterns carry their own
# case sensitivity because short tokens like "PC" or "AR" are only meaningful
# in upper case.
PLATFORM_KEYWORDS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:mobile|android|ios)\b", re.IGNORECASE), "mobile"),
    (re.compile(r"\bconsoles?\b", re.IGNORECASE), "console"),
    (re.compile(r"\bdesktop\b", re.IGNORECASE), "desktop"),
    (re.compile(r"\bPC\b"), "desktop"),
    (re.compile(r"\b(?:VR|AR|XR)\b"), "xr"),
)


@dataclass
class _SectionBuilder:
    number: int
    title: str
    level: int
    points: list[ValidationPoint] = field(default_factory=list)

    def build(self) -> Section:
        return Section(number=self.number, title=self.title, points=tuple(self.points))


@dataclass
class _Requirements:
    platforms: set[str] = field(default_factory=set)
    packages: set[str] = field(default_factory=set)
    depends_on: set[str] = field(default_factory=set)
    incompatible_platforms: set[str] = field(default_factory=set)
    runtime: bool = False


def parse_descriptor(
    text: str,
    name: str,
    policy: ScoringPolicy | None = None,
) -> ValidationTaskDescriptor:
    """Parse a task document, logging (not raising) per-bullet problems.

    Raises:
        DescriptorParseError: when no title or no numbered section is found.
    """
    descriptor, _ = parse_with_warnings(text, name, policy)
    return descriptor


def parse_with_warnings(
    text: str,
    name: str,
    policy: ScoringPolicy | None = None,
) -> tuple[ValidationTaskDescriptor, tuple[str, ...]]:
    """Parse a task document and also return the warnings it produced.

    Args:
        text: Raw markdown of the task document.
        name: Task name (usually derived from the file name).
        policy: Category classification table. Defaults to ``ScoringPolicy()``.

    Returns:
        The descriptor and a tuple of human-readable warnings.
    """
    policy = policy or ScoringPolicy()
    warnings: list[str] = []

    title = ""
    purpose_lines: list[str] = []
    heuristic_lines: list[str] = []
    sections: list[_SectionBuilder] = []
    requirements = _Requirements()

    # Mode is one of "free", "purpose", "section", "requirements".
    mode = "free"
    current: _SectionBuilder | None = None
    mode_level = 0

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip()

        if not title:
            title_match = _TITLE_RE.match(line)
            if title_match:
                title = title_match.group(1).strip()
                heuristic_lines.append(title)
                continue

        heading = _HEADING_RE.match(line)
        if heading:
            level = len(heading.group(1))
            heading_text = heading.group(2).strip()
            numbered = _NUMBERED_RE.match(heading_text)
            if numbered:
                current = _SectionBuilder(
                    number=int(numbered.group(1)),
                    title=numbered.group(2).strip(),
                    level=level,
                )
                sections.append(current)
                mode, mode_level = "section", level
                heuristic_lines.append(heading_text)
                continue
            if mode != "free" and level > mode_level:
                # Sub-heading inside the current block.
                heuristic_lines.append(heading_text)
                continue
            current = None
            lowered = heading_text.lower()
            if lowered in _PURPOSE_HEADINGS:
                mode, mode_level = "purpose", level
            elif lowered in _REQUIREMENT_HEADINGS:
                mode, mode_level = "requirements", level
            else:
                mode, mode_level = "free", level
                heuristic_lines.append(heading_text)
            continue

        if mode == "requirements":
            _parse_requirement(line, lineno, requirements, warnings)
            continue

        heuristic_lines.append(line)

        if mode == "purpose":
            purpose_lines.append(line)
        elif mode == "section" and current is not None:
            bullet = _BULLET_RE.match(line)
            if bullet:
                current.points.append(
                    _parse_point(bullet.group(1), lineno, name, policy, warnings)
                )

    if not title:
        raise DescriptorParseError(name, "no title heading found")
    if not sections:
        raise DescriptorParseError(name, "no numbered sections found")

    for builder in sections:
        if not builder.points:
            warnings.append(f"{name}: section {builder.number} '{builder.title}' has no criteria")

    _apply_heuristics("\n".join(heuristic_lines), requirements)

    for message in warnings:
        logger.warning(message)

    descriptor = ValidationTaskDescriptor(
        name=name,
        title=title,
        purpose="\n".join(purpose_lines).strip(),
        sections=tuple(b.build() for b in sections),
        platforms=tuple(sorted(requirements.platforms)),
        packages=tuple(sorted(requirements.packages)),
        depends_on=tuple(sorted(requirements.depends_on)),
        incompatible_platforms=tuple(sorted(requirements.incompatible_platforms)),
        runtime_required=requirements.runtime,
    )
    return descriptor, tuple(warnings)


def _parse_point(
    text: str,
    lineno: int,
    name: str,
    policy: ScoringPolicy,
    warnings: list[str],
) -> ValidationPoint:
    """Parse one bullet into a point, degrading to a generic point."""
    explicit_weight: float | None = None
    explicit_type: PointType | None = None

    annotation = _ANNOTATION_RE.search(text)
    if annotation:
        text = text[: annotation.start()].rstrip()
        explicit_weight, explicit_type = _parse_annotation(
            annotation.group("body"), lineno, name, warnings
        )

    match = _POINT_RE.match(_unbold_lead(text))
    if not match or not match.group("description").strip():
        warnings.append(f"{name}:{lineno}: bullet does not match 'category: description'")
        return ValidationPoint(
            category="general",
            description=text.strip(),
            weight=explicit_weight or 1.0,
            type=explicit_type or PointType.GENERAL,
        )

    category = match.group("category").strip()
    description = match.group("description").strip()
    point_type = explicit_type or policy.classify(category)
    weight = explicit_weight or policy.weight_for(point_type)
    return ValidationPoint(
        category=category,
        description=description,
        weight=weight,
        type=point_type,
    )


def _unbold_lead(text: str) -> str:
    """Turn ``**Category:** rest`` or ``**Category**: rest`` into ``Category: rest``."""
    bold = _BOLD_LEAD_RE.match(text)
    if bold:
        return bold.group("inner") + text[bold.end() :]
    return text


def _parse_annotation(
    body: str,
    lineno: int,
    name: str,
    warnings: list[str],
) -> tuple[float | None, PointType | None]:
    weight: float | None = None
    point_type: PointType | None = None
    for part in body.split(","):
        key, sep, value = part.partition("=")
        key, value = key.strip().lower(), value.strip().lower()
        if not sep:
            continue
        if key == "weight":
            try:
                parsed = float(value)
            except ValueError:
                warnings.append(f"{name}:{lineno}: invalid weight '{value}'")
                continue
            if parsed > 0:
                weight = parsed
            else:
                warnings.append(f"{name}:{lineno}: weight must be positive, got '{value}'")
        elif key == "type":
            try:
                point_type = PointType(value)
            except ValueError:
                warnings.append(f"{name}:{lineno}: unknown point type '{value}'")
    return weight, point_type


def _parse_requirement(
    line: str,
    lineno: int,
    requirements: _Requirements,
    warnings: list[str],
) -> None:
    bullet = _BULLET_RE.match(line)
    if not bullet:
        return
    key, sep, value = bullet.group(1).partition(":")
    target = _REQUIREMENT_KEYS.get(key.strip().strip("*_").lower())
    if not sep or target is None:
        warnings.append(f"line {lineno}: unrecognized requirement '{bullet.group(1)}'")
        return
    value = value.strip().strip("*_").strip()
    if target == "runtime":
        requirements.runtime = value.lower() in {"required", "yes", "true"}
        return
    values = [v.strip() for v in value.split(",") if v.strip()]
    if target in {"platforms", "incompatible_platforms"}:
        values = [v.lower() for v in values]
    getattr(requirements, target).update(values)


def _apply_heuristics(text: str, requirements: _Requirements) -> None:
    requirements.packages.update(PACKAGE_PATTERN.findall(text))
    for pattern, platform in PLATFORM_KEYWORDS:
        if pattern.search(text):
            requirements.platforms.add(platform)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_descriptor(descriptor: ValidationTaskDescriptor) -> str:
    """Serialize a descriptor back to the task document grammar."""
    lines: list[str] = [f"# {descriptor.title}", ""]

    if descriptor.purpose:
        lines += ["## Purpose", "", descriptor.purpose, ""]

    requirement_lines = [f"- package: {p}" for p in descriptor.packages]
    requirement_lines += [f"- platform: {p}" for p in descriptor.platforms]
    requirement_lines += [f"- depends-on: {d}" for d in descriptor.depends_on]
    requirement_lines += [f"- incompatible: {p}" for p in descriptor.incompatible_platforms]
    if descriptor.runtime_required:
        requirement_lines.append("- runtime: required")
    if requirement_lines:
        lines += ["## Requirements", "", *requirement_lines, ""]

    for section in descriptor.sections:
        lines += [f"### {section.number}. {section.title}", ""]
        for point in section.points:
            lines.append(
                f"- {point.category}: {point.description} "
                f"{{weight={point.weight!r}, type={point.type.value}}}"
            )
        lines.append("")

    return "\n".join(lines)
