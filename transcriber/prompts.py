from __future__ import annotations

from typing import Optional

DOMAIN_PREAMBLE = (
    "This is a technical interview. Terms: API, React, TypeScript, Docker, "
    "Kubernetes, DevOps, CI/CD, machine learning."
)

CANARY_PROMPT = "Test initialization"


def build_context_prompt(
    recent: list[str],
    hint: Optional[str] = None,
    preamble: str = DOMAIN_PREAMBLE,
) -> str:
    prompt = preamble
    if recent:
        prompt += f' Previous context: "{" ".join(recent)}"'
    if hint and hint.strip():
        prompt += f' Additional context: "{hint.strip()}"'
    return prompt
