"""Quiz grading and performance-analysis prompts.

Placeholders (``{Question}``, ``{Options}``, ...) are replaced literally,
so the JSON examples below need no brace escaping.
"""

from __future__ import annotations

QUIZ_FEEDBACK_PROMPT = """\
You are an expert educator providing feedback on a quiz question.

Question: {Question}

Options:
{Options}

Correct answer indices: {CorrectIndices}
Student selected indices: {SelectedIndices}

Context: {Context}

Please provide detailed feedback in the following JSON format:
{
    "feedback": "Overall feedback on the student's answer",
    "optionFeedback": [
        {
            "index": 0,
            "isCorrect": true,
            "explanation": "Why this option is correct or incorrect"
        }
    ]
}

Analyze each option and explain why it's correct or incorrect. Be encouraging but clear about mistakes."""

QUIZ_ANALYSIS_PROMPT = """\
You are an expert educator analyzing a student's quiz performance.

Context/Topic: {Context}

Score: {Score}

Quiz History:
{History}

Please analyze the student's performance and provide:
1. Overall performance assessment
2. Strengths (what they did well)
3. Areas for improvement (what needs work)
4. Recommended next topics to learn (if performance is good)
5. Recommended areas to review (if performance needs improvement)

Format your response as a comprehensive analysis that is encouraging but honest."""

KEY_CHECK_PROMPT = (
    "Generate a brief, friendly greeting for a user who just set up their API key. "
    "Keep it to one sentence and introduce yourself as Gemini."
)
