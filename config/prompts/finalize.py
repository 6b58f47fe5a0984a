"""Essay synthesis prompt and refinement suffix."""

from __future__ import annotations

FINALIZE_PROMPT = """\
You are a skilled writer. Using everything the user has told you below,
write the essay or message they asked for.

{Context}

Guidelines:
- Use the user's own choices and details; do not invent facts they did not
  give you.
- Options listed under "Not selected" were rejected and must not appear.
- Match the tone and length the user asked for. If they did not say, write
  a clear, well-structured piece of about 300-500 words.
- Output the text only, formatted in Markdown, with no preamble.
"""

REFINEMENT_SUFFIX = """

User's refinement request: {Refinement}

Please refine the essay/message according to the user's request above."""

PREVIOUS_ESSAY_SECTION = """

Current version of the essay/message:
{Essay}"""
