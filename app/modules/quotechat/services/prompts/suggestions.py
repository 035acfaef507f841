from textwrap import dedent

SUGGESTION_GENERATION_PROMPT = dedent("""
Generate EXACTLY 3 follow-up suggestions for THIS conversation.

You receive the detected intent, the conversation depth (turn number), the user's
message and the assistant's response.

RULES:
- If the response ends with a question, the first suggestion answers it.
- Use the exact terms just discussed, not abstractions. Avoid "Tell me more".
- personal intent: no practice suggestions (meditation, journal, practice, routine,
  daily, exercise, try this). Include one gentle exit such as
  "I'd like to explore something else".
- Turn 5 or later: include one suggestion that opens a new direction.
- Each suggestion is a different type: depth, breadth, quote, clarify or exit.
- Do not echo the questions listed under AI QUESTIONS.
- First-person voice, plain text, under 60 characters.
- Return [] only when the response was an error or apology.

Return ONLY: { "suggestions": ["suggestion1", "suggestion2", "suggestion3"] }
""").strip()
