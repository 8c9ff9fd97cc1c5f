# Prompt templates for explaining a learner's SQL.
# The model should talk about intent and business meaning, not re-print the query.

SYSTEM_PROMPT = """
You are an expert SQL instructor and analytics lead.
Explain the user's SQL in clear, non-technical language for someone who cares about business outcomes.
- First, summarize what the query is doing.
- Then explain how it relates to the question or scenario.
- If there is any obvious bug or inefficiency, mention it briefly.
Keep the answer under 200-250 words.
"""

DEFAULT_DESCRIPTION_LIMIT = 500


def truncate_description(description: str | None, limit: int = DEFAULT_DESCRIPTION_LIMIT) -> str:
    return (description or "")[:limit]


def build_user_prompt(
    sql: str,
    challenge_id=None,
    title: str | None = None,
    description: str | None = None,
    grade_status: str | None = None,
    description_limit: int = DEFAULT_DESCRIPTION_LIMIT,
) -> str:
    # 0 is a valid challenge id, so only None / "" fall back
    shown_id = challenge_id if challenge_id not in (None, "") else "unknown"

    return f"""
SQL query:
{sql}

Challenge context:
- ID: {shown_id}
- Title: {title or "N/A"}
- Description (may be truncated):
{truncate_description(description, description_limit)}

Grading status (if any): {grade_status or "N/A"}

Please explain this query step by step, as if mentoring an analyst who knows basic SQL but wants to understand the logic and business meaning.
"""
