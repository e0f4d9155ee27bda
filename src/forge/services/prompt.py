from __future__ import annotations

import json
from typing import Mapping

from ..domain.models import Fragment, TemplateSpec


def templates_to_prompt(templates: Mapping[str, TemplateSpec]) -> str:
    lines = []
    for index, (template_id, t) in enumerate(templates.items(), start=1):
        lines.append(
            f'{index}. {template_id}: "{t.instructions}". File: {t.file or "none"}. '
            f'Dependencies installed: {", ".join(t.lib)}. Port: {t.port or "none"}.'
        )
    return "\n".join(lines)


def output_instructions() -> str:
    schema = json.dumps(Fragment.model_json_schema(), separators=(",", ":"))
    return (
        "Respond with a single JSON object and nothing else, no markdown fences. "
        "Emit the fields in this order: commentary, template, title, description, "
        "additional_dependencies, has_additional_dependencies, install_dependencies_command, "
        "port, file_path, code. "
        "`code` is either the full content of `file_path` or a list of "
        '{"file_path", "file_content"} objects for multi-file output. '
        f"JSON schema: {schema}"
    )


def to_prompt(templates: Mapping[str, TemplateSpec]) -> str:
    return "\n".join(
        [
            "You are a skilled software engineer and web designer.",
            "You do not make mistakes.",
            "Generate a fragment: complete, production-ready code that runs in the selected template's sandbox.",
            "You can install additional dependencies.",
            "Do not touch project dependencies files like package.json, package-lock.json, requirements.txt, etc.",
            "Put commentary first: briefly explain what you are about to build and how.",
            "",
            "You can use one of the following templates:",
            templates_to_prompt(templates),
            "",
            output_instructions(),
        ]
    )
