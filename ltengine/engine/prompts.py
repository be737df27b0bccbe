"""Translation prompt construction."""

from __future__ import annotations

from .adapters.base import ModelHandle

AUTO_SOURCE = "auto"

TRANSLATE_INSTRUCTION = (
    "Translate this text from {source} to {target}, output just the translation, nothing else:\n\n{text}"
)

TRANSLATE_INSTRUCTION_AUTO = "Translate this text to {target}, output just the translation, nothing else:\n\n{text}"


def build_translation_prompt(text: str, source_name: str, target_name: str) -> str:
    """Natural-language translation instruction for `text`.

    `source_name` may be "auto", in which case the model detects the source language.
    """
    if not source_name or source_name == AUTO_SOURCE:
        return TRANSLATE_INSTRUCTION_AUTO.format(target=target_name, text=text)
    return TRANSLATE_INSTRUCTION.format(source=source_name, target=target_name, text=text)


def render_prompt(handle: ModelHandle, instruction: str, *, use_chat_template: bool = True) -> list[int]:
    """Tokenize `instruction`, wrapped as a single user turn when the model has a chat template."""
    if use_chat_template:
        rendered = handle.render_chat(instruction)
        if rendered is not None:
            # The rendered template already carries BOS.
            return handle.tokenize(rendered, add_special=False)
    return handle.tokenize(instruction, add_special=True)
