"""Prompt template resolution.

Merges an instruction template (user-stored or built-in) with the topic and
the replayed question/answer history.  Placeholders are substituted in one
pass: ``{Context}`` becomes the composed context, no ``str.format``
involved, so templates may contain JSON braces freely.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Sequence

from config.prompts.finalize import FINALIZE_PROMPT, PREVIOUS_ESSAY_SECTION, REFINEMENT_SUFFIX
from config.prompts.question import QUESTION_PROMPT, QUIZ_QUESTION_PROMPT
from config.prompts.quiz import QUIZ_ANALYSIS_PROMPT, QUIZ_FEEDBACK_PROMPT
from config.settings import get_settings
from models.conversation import ConversationTurn

logger = logging.getLogger(__name__)

_BUILTIN_TEMPLATES = {
    "question": QUESTION_PROMPT,
    "quiz_question": QUIZ_QUESTION_PROMPT,
    "finalize": FINALIZE_PROMPT,
}


def load_template(name: str) -> str:
    """Return the default template ``name``.

    A ``<name>_prompt.txt`` file in ``settings.prompt_dir`` wins over the
    built-in text.
    """
    if name not in _BUILTIN_TEMPLATES:
        raise KeyError(f"Unknown prompt template: {name}")
    prompt_dir = get_settings().prompt_dir
    if prompt_dir:
        path = Path(prompt_dir) / f"{name}_prompt.txt"
        if path.is_file():
            return path.read_text(encoding="utf-8")
        logger.debug("No %s in prompt_dir, using built-in template", path.name)
    return _BUILTIN_TEMPLATES[name]


_TOKEN_RE = re.compile(r"\{(\w+)\}")


def fill_template(template: str, values: dict[str, str]) -> str:
    """Replace every ``{Key}`` token with its value in a single pass.

    Substituted text is never scanned again, so a ``{Context}`` typed by the
    user stays literal.  Tokens without a value are left untouched.
    """
    return _TOKEN_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


# ── History formatting ───────────────────────────────────────


def format_history(turns: Sequence[ConversationTurn]) -> str:
    """Format turns as ``Q:/A:`` blocks, listing rejected options.

    Example::

        Q: Who is the audience?
        A: Friends | Additional: from college
        Not selected: Coworkers, Family
    """
    blocks: list[str] = []
    for turn in turns:
        entry = f"Q: {turn.question}\nA: {turn.answer}"
        rejected = turn.not_selected_options
        if rejected:
            entry += f"\nNot selected: {', '.join(rejected)}"
        blocks.append(entry)
    return "\n\n".join(blocks)


def compose_context(context: str, turns: Sequence[ConversationTurn]) -> str:
    """Topic text followed by the history, if there is any."""
    if not turns:
        return context
    return f"{context}\n\nPrevious questions and answers:\n{format_history(turns)}"


def format_quiz_history(turns: Sequence[ConversationTurn]) -> str:
    blocks: list[str] = []
    for turn in turns:
        entry = f"Question: {turn.question}\nStudent Answer: {turn.answer}\n"
        if turn.feedback:
            entry += f"Feedback: {turn.feedback}\n"
        if turn.option_feedback:
            dumped = [f.model_dump(by_alias=True) for f in turn.option_feedback]
            entry += f"Option Feedback: {json.dumps(dumped, ensure_ascii=False)}\n"
        blocks.append(entry)
    return "\n---\n\n".join(blocks)


# ── Final prompts ────────────────────────────────────────────


def resolve_question_prompt(
    context: str,
    turns: Sequence[ConversationTurn],
    template: str | None = None,
    quiz: bool = False,
) -> str:
    """Build the prompt for the next question.

    A non-blank stored ``template`` replaces the built-in one.
    """
    if template is None or not template.strip():
        template = load_template("quiz_question" if quiz else "question")
    return fill_template(template, {"Context": compose_context(context, turns)})


def resolve_finalize_prompt(
    context: str,
    turns: Sequence[ConversationTurn],
    refinement: str | None = None,
    previous_essay: str | None = None,
) -> str:
    prompt = fill_template(load_template("finalize"), {"Context": compose_context(context, turns)})
    if refinement and refinement.strip():
        if previous_essay and previous_essay.strip():
            prompt += fill_template(PREVIOUS_ESSAY_SECTION, {"Essay": previous_essay.strip()})
        prompt += fill_template(REFINEMENT_SUFFIX, {"Refinement": refinement.strip()})
    return prompt


def resolve_feedback_prompt(
    question: str,
    options: Sequence[str],
    selected_indices: Sequence[int],
    correct_indices: Sequence[int],
    context: str | None = None,
) -> str:
    return fill_template(
        QUIZ_FEEDBACK_PROMPT,
        {
            "Question": question,
            "Options": "\n".join(f"{i}: {opt}" for i, opt in enumerate(options)),
            "CorrectIndices": ", ".join(str(i) for i in correct_indices),
            "SelectedIndices": ", ".join(str(i) for i in selected_indices),
            "Context": context or "No additional context provided",
        },
    )


def resolve_analysis_prompt(
    context: str,
    turns: Sequence[ConversationTurn],
    score_text: str,
) -> str:
    return fill_template(
        QUIZ_ANALYSIS_PROMPT,
        {
            "Score": score_text,
            "History": format_quiz_history(turns) or "No quiz history available.",
            "Context": context,
        },
    )
