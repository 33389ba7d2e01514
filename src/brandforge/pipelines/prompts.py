"""Prompt builders for every generation type.

Prompts are built from the session snapshot captured when the user confirmed
the job, so a job replays the same way no matter when the worker runs it.
"""

from typing import Any

MAX_PROMPT_LENGTH = 4000

LOGO_REQUIREMENTS = (
    "Please generate a professional, industry-standard logo that:",
    "1. Reflects the brand identity and values described above",
    "2. Is memorable, unique, and stands out from competitors",
    "3. Works well at different sizes (scalable vector-style design)",
    "4. Uses appropriate colors that convey the right emotions and industry standards",
    "5. Incorporates typography that matches the brand personality",
    "6. Is scalable, works on both light and dark backgrounds, and suits both digital "
    "and print use",
    "7. Follows professional industry standards for logo design with appropriate contrast, "
    "legibility, and recognition",
    "8. Demonstrates clear visual hierarchy and proper spacing",
)

# One art direction per concept, so concepts differ from each other
LOGO_DIRECTIONS = (
    "Create a professional, minimalist logo. Style: modern, clean, scalable. "
    "Make it distinctive and memorable.",
    "Design a bold, symbolic logo. Style: iconic, strong visual impact. "
    "Focus on symbolism and brand recognition.",
    "Design a typographic wordmark logo. Style: custom lettering, elegant spacing. "
    "Let the name itself carry the identity.",
    "Design an emblem-style logo. Style: contained badge shape, balanced detail. "
    "Keep it legible at small sizes.",
)

# (session key, label) in the order they appear in the brief
LOGO_BRIEF_FIELDS = (
    ("name", "Brand Name"),
    ("tagline", "Tagline"),
    ("mission", "Mission/Industry"),
    ("audience", "Target Audience"),
    ("vibe", "Brand Vibe"),
    ("style_preferences", "Style Preferences"),
    ("color_preferences", "Color Preferences"),
    ("typography", "Typography"),
    ("icon_idea", "Icon Ideas"),
    ("inspiration", "Inspiration"),
    ("final_notes", "Additional Notes"),
)

MEME_TEXT_RULE = (
    "CRITICAL RULE: All text MUST be positioned well within the image boundaries with "
    "substantial margins (at least 10% of image height from top and bottom edges). "
    "Absolutely NO text or important elements should be cut off or cropped at the edges. "
    "Place text centrally and ensure there is ample padding around all text elements. "
    "Text should be clearly legible with high contrast against the background. "
    "For headlines or main text, position them in the middle 70% of the image area. "
    "Ensure correct spelling and grammar for all text. "
    "Do not generate any random characters or watermarks. "
    "Avoid weird hands, faces, or other parts. "
    "No visual artifacts, no borders, and ensure high visual clarity. "
    "The meme should look like a professional, well-composed poster or social media meme."
)

MEME_IMAGE_USAGE = {
    "ai_decide": "Use the uploaded image in the most meme-appropriate way (background, "
    "template, or inpainting) based on the meme style and content.",
    "background": "Use the uploaded image as the meme background. Overlay all text and "
    "elements, do not modify the image content.",
    "inpaint": "Modify the uploaded image to fit the meme joke, but keep the main subject "
    "recognizable.",
    "template": "Use the uploaded image as a classic meme template. Place text and elements "
    "in standard meme locations for this format.",
}

EDIT_SUFFIX = "Make this a sticker with a transparent background."

ICON_PROMPT = (
    'Create a clean, standalone icon version of this logo for "{display_name}". '
    "Extract only the main visual symbol/element, remove all text, and make it simple "
    "and recognizable. Focus on the core icon that represents the brand - it should work "
    "well at both small and large sizes."
)


def validate_prompt(prompt: str, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """Validate prompt text before it is sent to the provider.

    Args:
        prompt: Built prompt text
        max_length: Longest prompt accepted

    Returns:
        Prompt with surrounding whitespace removed

    Raises:
        ValueError: If prompt is empty or exceeds max_length characters
    """
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValueError("Prompt cannot be empty")
    if len(prompt) > max_length:
        raise ValueError(
            f"Prompt exceeds maximum length of {max_length} characters (got {len(prompt)})"
        )
    return prompt


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value if item)
    return str(value).strip()


def _skipped(value: str, *sentinels: str) -> bool:
    return not value or value.lower() in sentinels


def build_logo_brief(session: dict[str, Any], brand_name: str) -> str:
    """Describe the brand from the wizard answers, followed by the requirements list."""
    answers = {**session, "name": session.get("name") or brand_name}
    lines = []
    for key, label in LOGO_BRIEF_FIELDS:
        value = _text(answers.get(key))
        if value:
            lines.append(f"{label}: {value}")
    return "\n".join([*lines, "", *LOGO_REQUIREMENTS])


def build_logo_prompts(session: dict[str, Any], brand_name: str, concepts: int = 2) -> list[str]:
    """One prompt per concept, each with its own art direction.

    Raises:
        ValueError: If more concepts are requested than there are directions
    """
    if not 1 <= concepts <= len(LOGO_DIRECTIONS):
        raise ValueError(f"concepts must be between 1 and {len(LOGO_DIRECTIONS)}")
    brief = build_logo_brief(session, brand_name)
    return [
        validate_prompt(f"{direction}\n\n{brief}") for direction in LOGO_DIRECTIONS[:concepts]
    ]


def build_meme_prompt(
    session: dict[str, Any], prompt: str = "", has_reference_image: bool = False
) -> str:
    """Assemble the meme prompt from the wizard answers.

    ``prompt`` is free text typed by the user and is used as the topic when the
    session has none.
    """
    parts = ["Create a viral crypto meme"]

    usage = _text(session.get("image_usage")) or "ai_decide"
    if has_reference_image:
        parts[0] += f". {MEME_IMAGE_USAGE.get(usage, MEME_IMAGE_USAGE['ai_decide'])}"

    topic = _text(session.get("topic")) or _text(prompt)
    if topic:
        parts.append(f" about {topic}")
    audience = _text(session.get("audience"))
    if audience:
        parts.append(f" for {audience}")
    mood = _text(session.get("mood"))
    if mood:
        parts.append(f" in a {mood} style")
    elements = _text(session.get("elements"))
    if elements:
        parts.append(f" with {elements}")

    caption = _text(session.get("caption"))
    if not _skipped(caption, "skip"):
        parts.append(f". Caption: {caption}")
    meme_format = _text(session.get("format"))
    if not _skipped(meme_format, "other"):
        parts.append(f". Format: {meme_format}")
    color = _text(session.get("color"))
    if not _skipped(color, "skip"):
        parts.append(f". Color mood: {color}")
    style = _text(session.get("style_description")) or _text(session.get("style"))
    if style:
        parts.append(f". Style: {style}")

    parts.append(". ")
    parts.append(MEME_TEXT_RULE)
    return validate_prompt("".join(parts))


def build_sticker_prompt(
    session: dict[str, Any], count: int, style: str | None = None, prompt: str = ""
) -> str:
    """Sectioned sticker brief shared by every unit of a batch."""
    style = style or _text(session.get("style")) or "Crypto"
    phrases = _text(session.get("phrases")) or _text(prompt)
    has_image = bool(session.get("reference_image_url"))

    sections = [
        "=== STICKER CONTEXT ===",
        f"Style Theme: {style}",
        f"Sticker Count: {count} stickers",
        "Has Reference Image: "
        + (
            "Yes - use uploaded image as reference"
            if has_image
            else "No - create original designs"
        ),
        "",
        "=== CONTENT REQUIREMENTS ===",
        f'Text/Phrases/Emojis: "{phrases}"'
        if not _skipped(phrases, "none")
        else "No specific text requirements",
        "",
        "=== DESIGN REQUIREMENTS ===",
        "Style: Bold, colorful, eye-catching design",
        "Background: Transparent background (PNG with alpha channel if possible)",
        "Composition: Don't crop any important elements",
        "Text Safety: Don't include text that is cut off",
        "Text Readability: Make sure any text is easily readable",
        "Quality: High-quality, professional appearance",
        "",
        "=== TECHNICAL SPECIFICATIONS ===",
        "Format: PNG",
        "Size: 512x512 (will be post-processed if needed)",
        "Quality: High resolution, crisp edges",
    ]
    return validate_prompt("\n".join(sections))


def sticker_variation(prompt: str, index: int) -> str:
    """Per-unit prompt so stickers in one batch differ."""
    return f"{prompt} (variation {index + 1})"


def build_edit_prompt(instruction: str) -> str:
    return validate_prompt(f"{instruction.strip().rstrip('.')}. {EDIT_SUFFIX}")


def build_icon_prompt(display_name: str) -> str:
    return validate_prompt(ICON_PROMPT.format(display_name=display_name))
