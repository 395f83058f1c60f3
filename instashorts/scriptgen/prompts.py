"""Prompt templates and the art-style catalogue used by the text generator."""

# Art style id -> descriptive fragment injected into every scene prompt.
ART_STYLES: dict[str, str] = {
    "collage": "collage style, layered mixed-media aesthetic, paper cutouts, textured elements, artistic composition",
    "cinematic": "cinematic style, film-like quality, dramatic lighting, cinematic composition, movie aesthetic",
    "digital-art": "modern digital art style, digital illustration, vibrant colors, contemporary art",
    "neon-futuristic": "neon futuristic style, cyberpunk aesthetic, neon lights, futuristic urban environment, vibrant neon colors",
    "comic-book": "comic book style, bold lines, vibrant colors, stylized illustration, comic art aesthetic",
    "playground": "playground style, bright and playful cartoon aesthetic, cheerful colors, fun and energetic",
    "4k-realistic": "ultra-realistic 4K style, photorealistic, high detail, professional photography quality",
    "cartoon": "cartoon style, classic animation, expressive characters, vibrant colors, animated aesthetic",
    "kawaii": "kawaii style, cute Japanese aesthetic, pastel colors, adorable characters, soft and sweet",
    "anime": "anime style, Japanese animation aesthetic, expressive eyes, vibrant colors, anime art",
    "line-art": "line art style, minimalist black and white line drawings, clean lines, simple elegant",
    "japanese-ink": "Japanese ink painting style, sumi-e aesthetic, black and red ink, traditional Japanese art",
}

DEFAULT_ART_STYLE = "consistent art style"


def describe_art_style(art_style: str | None) -> str:
    return ART_STYLES.get(art_style or "", DEFAULT_ART_STYLE)


SCRIPT_PROMPT = """\
Write a compelling 1 paragraph script for a short video about: {theme}.
Make it engaging, clear, and suitable for a short-form video format. The script \
should be in paragraph format without voice changes or other formatting. Be \
slightly poetic, so the listener can appreciate a conclusive story or theme by \
the end of the script.
The script should be approximately 50 words long.

Style rules:
- Use simple, direct language. Avoid dashes, em-dashes, or hyphenated compounds.
- Write in short, clear sentences. Avoid complex nested phrases.
- No parenthetical asides.
- Keep the flow natural and conversational, not overly literary or academic.
"""

TITLE_PROMPT = """\
Generate a short, catchy title (less than 10 words, no punctuation) for a video \
about: {theme}. Return only the title text, nothing else.
"""

SCENES_PROMPT = """\
Based on this video script and theme, generate {count} detailed scenes for a short video.

Script: {script}
Theme: {theme}
Art Style: {art_style}

For each scene, create a detailed image prompt that includes:
- The specified art style: {art_style}
- Color theme and vibe matching the art style
- Camera/animation style
- What's happening in the scene, and who is doing what
- Background and foreground details
- Overall atmosphere and mood

All scenes must consistently use the {art_style} art style.

Respond with JSON in this exact format, with exactly {count} scenes:
{{
  "scenes": [
    {{"sceneIndex": 0, "image_prompt": "detailed description here"}},
    {{"sceneIndex": 1, "image_prompt": "detailed description here"}}
  ]
}}
"""

EMOJI_PROMPT = """\
Given this video script and list of words, identify 8-12 key words that would \
benefit from an emoji. Choose nouns, verbs or important concepts with a clear, \
relevant emoji, spread throughout the script rather than clustered together.

Script: {script}
Theme: {theme}

Words with timing:
{words}

Use culturally universal single emojis that are visually distinct from each other.

Respond with JSON in this exact format:
{{
  "emojiWords": [
    {{"index": 5, "word": "Caesar", "emoji": "\N{CROWN}"}}
  ]
}}
"""

SERIES_TOPIC_PROMPT = """\
A video series has the main theme: "{theme}".
Generate one new, specific and interesting sub-topic for a 1-minute video about this theme.

For example, if the theme is 'Ancient Rome', a good sub-topic is 'The invention of \
Roman concrete' or 'The life of a Legionary'. If the theme is 'Psychology Facts', a \
good sub-topic is 'The Dunning-Kruger Effect'.

Return ONLY the new sub-topic text, nothing else.
"""
