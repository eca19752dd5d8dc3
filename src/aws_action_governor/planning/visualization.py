"""Mermaid rendering of an execution plan's step graph."""

from __future__ import annotations

from aws_action_governor.domain.models import ExecutionStep

_CLASS_DEFS = (
    "    classDef precheck fill:#e1f5fe,stroke:#01579b",
    "    classDef action fill:#fff3e0,stroke:#e65100",
    "    classDef postcheck fill:#e8f5e9,stroke:#1b5e20",
)


def _step_class(step: ExecutionStep) -> str:
    if step.is_precheck:
        return "precheck"
    if step.is_postcheck:
        return "postcheck"
    return "action"


def render_mermaid(steps: list[ExecutionStep]) -> str:
    lines = ["graph TD"]
    for step in steps:
        label = step.description.replace('"', "'")
        if step.is_check:
            lines.append(f'    {step.step_id}(["{label}"])')
        else:
            lines.append(f'    {step.step_id}["{label}"]')

    for step in steps:
        for dep in step.depends_on or ():
            lines.append(f"    {dep} --> {step.step_id}")

    lines.append("")
    lines.extend(_CLASS_DEFS)
    for step in steps:
        lines.append(f"    class {step.step_id} {_step_class(step)}")
    return "\n".join(lines) + "\n"
