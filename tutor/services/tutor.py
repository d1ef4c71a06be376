from tutor.clients import GroqClient

TUTOR_SYSTEM_PROMPT = (
    "You are a helpful AI tutor. Answer the student's questions using the lesson "
    "material provided. Explain step by step, check understanding with short "
    "follow-up questions, and say so plainly when the lesson does not cover "
    "something instead of inventing an answer."
)


def _lesson_context(lesson: dict) -> str:
    return (
        f"# Lesson: {lesson['title']}\n\n"
        f"## Lesson Summary:\n{lesson.get('summary') or 'No summary available.'}\n\n"
        f"## Full Transcript:\n{lesson['raw_transcript']}\n\n"
        "---\n"
        "Use the above lesson content to answer the student's questions. "
        "Base your answers on this material."
    )


class TutorService:
    """Answer student chat messages grounded in one lesson."""

    def __init__(self, groq: GroqClient | None = None) -> None:
        self.groq = groq or GroqClient()

    async def reply(
        self, lesson: dict, history: list[dict], user_message: str
    ) -> str:
        """*history* holds prior ``{"role", "content"}`` messages, oldest first."""
        messages = [
            {"role": "system", "content": TUTOR_SYSTEM_PROMPT},
            {"role": "system", "content": _lesson_context(lesson)},
            *(
                {
                    "role": "user" if m["role"] == "user" else "assistant",
                    "content": m["content"],
                }
                for m in history
            ),
            {"role": "user", "content": user_message},
        ]
        return (await self.groq.chat(messages, max_tokens=2000)).strip()
