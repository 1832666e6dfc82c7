from __future__ import annotations
from typing import Mapping, Optional

HEADER = (
    "You are an experienced physiotherapist creating evidence-based visit recommendations.",
    "Provide concise, actionable guidance tailored to the patient's current visit.",
)

OUTPUT_REQUIREMENTS = (
    "- Focus on functional goals and measurable outcomes.",
    "- List specific exercises or interventions with brief rationale.",
    "- Highlight any precautions or follow-up considerations.",
)


def _section(lines: list, title: str, body: Optional[str]) -> None:
    if body is None or not body.strip():
        return
    lines.append(f"{title}:")
    lines.append(body.strip())
    lines.append("")


def build_prompt(
    interview: Optional[str],
    description: Optional[str],
    recommendations: Optional[str],
    overrides: Optional[Mapping[str, str]] = None,
) -> str:
    """
    방문 서술 + 클라이언트 override 로 모델에 보낼 단일 프롬프트를 만든다.
    같은 입력이면 항상 같은 문자열 (부수효과 없음).
    """
    lines = list(HEADER)
    lines.append("")
    lines.append("Patient Visit Summary:")

    _section(lines, "Interview Notes", interview)
    _section(lines, "Clinical Description", description)
    _section(lines, "Previous Recommendations", recommendations)

    entries = [
        (key.strip(), value.strip())
        for key, value in (overrides or {}).items()
        if key and key.strip() and value and value.strip()
    ]
    if entries:
        lines.append("Client Overrides:")
        for key, value in entries:
            lines.append(f"- {key}: {value}")
        lines.append("")

    lines.append("Output Requirements:")
    lines.extend(OUTPUT_REQUIREMENTS)

    return "\n".join(lines).strip()
