from tutor.clients import GroqClient
from tutor.config import settings

SUMMARY_SYSTEM_PROMPT = """\
You are an expert educational assistant that creates clear, structured lesson \
summaries from classroom transcripts.

Analyze the provided transcript and write a comprehensive yet concise lesson \
summary in markdown:

- Organize the summary with headers (##, ###).
- Highlight the main topics covered, key concepts and definitions.
- Include important examples or demonstrations.
- Write in clear, student-friendly language.
- Use bold for key terms, bullet points for lists, and code blocks for code \
or formulas.

Output format:

# [Lesson Topic]

## Overview
[2-3 sentence overview of what was covered]

## Main Topics
### [Topic]
[Key points]

## Key Takeaways
- [Important point]

## Additional Notes
[Homework, reminders, or next steps mentioned]

A student who missed class should be able to understand what was taught, and \
the summary should still work as a study guide."""


class SummaryError(Exception):
    pass


class SummaryService:
    """Generate lesson summaries from raw transcripts via the Groq API."""

    def __init__(self, groq: GroqClient | None = None) -> None:
        self.groq = groq or GroqClient(model=settings.summary_model)

    async def summarize(self, title: str, transcript: str) -> str:
        """Return the markdown summary. Raises ``SummaryError`` on an empty reply."""
        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Lesson Title: {title}\n\nTranscript:\n{transcript}",
            },
        ]
        content = await self.groq.chat(
            messages,
            temperature=settings.summary_temperature,
            max_tokens=settings.summary_max_tokens,
        )
        summary = content.strip()
        if not summary:
            raise SummaryError("Summarizer returned an empty response")
        return summary
