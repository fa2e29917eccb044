from __future__ import annotations

from vibeflow.ai.types import Platform


PROMPT_VERSION = "v1"


def _string_schema(name: str, description: str) -> dict:
    return {
        "type": "OBJECT",
        "properties": {name: {"type": "STRING", "description": description}},
        "required": [name],
    }


SUMMARY_SCHEMA = _string_schema("summary", "The summarized content.")
POST_SCHEMA = _string_schema("post", "The generated social media post for the specified platform.")
TUNED_POST_SCHEMA = _string_schema("tunedPost", "The tuned social media post.")

ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "analysis": {"type": "STRING", "description": "A brief overall analysis of the post."},
        "flags": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "start": {"type": "INTEGER"},
                    "end": {"type": "INTEGER"},
                    "originalText": {"type": "STRING"},
                    "issue": {"type": "STRING"},
                    "suggestion": {"type": "STRING"},
                },
                "required": ["start", "end", "originalText", "issue", "suggestion"],
            },
        },
    },
    "required": ["analysis", "flags"],
}


PLATFORM_GUIDELINES: dict[Platform, str] = {
    Platform.LINKEDIN: (
        "LinkedIn: professional but human tone, a strong opening line, short paragraphs, "
        "end with a question or call-to-action, at most 3 hashtags."
    ),
    Platform.TWITTER: (
        "Twitter/X: punchy and conversational, must stay under 280 characters including hashtags, "
        "at most 2 hashtags."
    ),
    Platform.YOUTUBE: (
        "YouTube: write a video description with a hook in the first two lines, a short overview "
        "of what the viewer will learn and relevant hashtags at the end."
    ),
}

TUNE_PRESETS: dict[str, str] = {
    "witty": "Make wittier",
    "concise": "More concise",
    "professional": "More professional",
    "emojis": "Add emojis",
}


def summarize_prompt(processed_content: str, original_input: str, is_placeholder: bool) -> str:
    if is_placeholder:
        return (
            "Summarize the following content concisely.\n"
            f"Note: The original input was '{original_input}'. It might be a URL that could not be fully "
            "processed or direct text. Summarize based on the available information.\n"
            f"Content: {processed_content}"
        )
    return (
        "Summarize the following content concisely.\n"
        f"Original Input (URL or Text): {original_input}\n"
        "Content to Summarize:\n"
        f"{processed_content}"
    )


def generate_prompt(summary: str, platform: Platform) -> str:
    return (
        f"You are a social media expert. Generate a social media post for the following platform: {platform.value}.\n\n"
        f"Here is the content summary: {summary}.\n\n"
        "Make sure the post is engaging and tailored to the platform.\n"
        f"{PLATFORM_GUIDELINES[platform]}"
    )


def tune_prompt(post_content: str, platform: Platform, instruction: str, persona_prompt: str | None = None) -> str:
    lines = [
        "You are a social media expert. You will be given an original social media post and feedback on "
        "how to improve it. Tune the post based on the feedback, keeping the length appropriate for "
        f"{platform.value}.",
        PLATFORM_GUIDELINES[platform],
    ]
    if persona_prompt:
        lines.append(f"Write in this voice: {persona_prompt}")
    lines.append("")
    lines.append(f"Original Post: {post_content}")
    lines.append(f"Feedback: {instruction}")
    lines.append("")
    lines.append("Tuned Post:")
    return "\n".join(lines)


def analyze_prompt(post_content: str, platform: Platform) -> str:
    p = platform.value
    return (
        f"You are an expert social media copy editor. Analyze the following post draft intended for {p}.\n\n"
        f"Draft:\n{post_content}\n\n"
        f"Review the draft for tone (is it appropriate for {p}?), clarity and engagement.\n\n"
        "Provide a brief overall analysis. Then identify specific segments (\"flags\") that could be improved. "
        "For each flag give the exact original text, its start and end character index in the draft "
        "(end exclusive), a concise description of the issue and a concrete rewrite suggestion.\n\n"
        "If the post looks good, give a positive analysis and an empty array for flags."
    )
