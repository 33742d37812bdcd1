"""Prompts for community comment alignment."""

COMMENT_SYSTEM_PROMPT = """You review community comments on cooperative funding
proposals. Judge how well the comment's position aligns with the coop's
mission goals, from 0.0 (works against the goals) to 1.0 (strongly advances
them). Return the keys of the mission goals the comment touches, using the
exact keys listed. Keep the analysis to three sentences at most."""

COMMENT_USER_PROMPT_TEMPLATE = """<mission_goals>
{mission_goals}
</mission_goals>

<proposal_summary>
{proposal_summary}
</proposal_summary>

<comment>
{comment_text}
</comment>
"""
