"""Prompt compilation for comic script and panel image generation.

Two prompts are built here:

- the **script prompt**, sent once per comic to the text model together with
  the reference photo, asking for a title and five scene/narration pairs;
- the **panel prompt**, sent once per panel to the image model together with
  the reference photo.

Both are plain templating.  The fixed boilerplate below pins the visual
identity of every comic (classic printed comic book, not photo, not anime)
and the character-lock rules that keep the cast looking the same from panel
to panel.

Panel Prompt Structure::

    [Negative style guard]

    [Panel header + scene, enriched with character descriptions]

    [Main character resemblance directive]

    [Character consistency block]

    [Style contract]

    [Layout: panel position + aspect ratio]

Sections are separated by double newlines.  Empty sections are omitted.
"""

from __future__ import annotations

from dataclasses import dataclass

PANEL_COUNT = 5
PANEL_KEYS = tuple(f"box{i}" for i in range(1, PANEL_COUNT + 1))

DEFAULT_MAIN_CHARACTER = "The Hero"
REFERENCE_IMAGE_CONTEXT = "the provided reference image"

# ---------------------------------------------------------------------------
# Fixed boilerplate sections.
# ---------------------------------------------------------------------------

_CONSISTENCY_RULES = (
    "CHARACTER CONSISTENCY RULES (STRICT):\n"
    "- Once a character appears, their appearance is locked for the whole comic.\n"
    "- Face shape, skin tone, eyes, nose, mouth, body type, height and proportions "
    "stay exactly the same in every panel.\n"
    "- Clothing, colours, hairstyle, accessories and footwear stay identical in every panel.\n"
    "- The main character ({main}) is based on the uploaded photo for identity only "
    "(face and body shape). Never render the photo itself or copy its lighting, skin "
    "texture or realism.\n"
    "- Every scene description restates the key visual traits "
    "(for example: same red hoodie, same short black hair, same round face, same sneakers)."
)

_SCRIPT_STYLE_RULES = (
    "COMIC STYLE:\n"
    "- Classic American comic book illustration, 2D hand-drawn cartoon only.\n"
    "- Thick black ink outlines, flat solid colours, simple cel shading, halftone dots.\n"
    "- Bold, bright colours suitable for a children's comic book.\n"
    "- Never photos, photorealism, 3D renders, digital painting, anime or manga.\n"
    "- The style never drifts: every panel looks drawn by the same artist on the same page."
)

_STORY_STRUCTURE = (
    "Story structure (five panels telling one complete story):\n"
    "- Box 1: Opening. Introduce the character and the setting.\n"
    "- Box 2: Rising action. Something interesting happens or a challenge appears.\n"
    "- Box 3: Development. The character faces the challenge or explores further.\n"
    "- Box 4: Climax. The most exciting moment or turning point.\n"
    "- Box 5: Resolution. A clear, satisfying ending. The story must be complete here."
)

_OUTPUT_CONSTRAINTS = (
    "Output:\n"
    "- title: a short, catchy name for the story.\n"
    "- box1..box5: each with a scene (visual description in comic book style, including "
    "the character appearance details) and a narration (one or two simple sentences).\n"
    "- Tone: fun, exciting and safe. No violent, scary or harmful content."
)

_NEGATIVE_STYLE_GUARD = (
    "NEGATIVE PROMPT:\n"
    "photo, photograph, photorealistic, realistic, ultra-detailed, cinematic lighting, "
    "soft lighting, studio lighting, 3d render, blender, unreal engine, digital painting, "
    "concept art, anime, manga, chibi, pixar, disney, dreamworks, smooth shading, "
    "gradients, realism"
)

_STYLE_CONTRACT = (
    "STYLE CONTRACT:\n"
    "This image must look like a classic American comic book panel.\n"
    "- Hand-drawn illustration with thick black ink outlines around all characters and objects\n"
    "- Flat, solid colours with one or two cel-shading tones, no gradients\n"
    "- Halftone dot texture for shadows and backgrounds\n"
    "- Bold, high-contrast palette and slightly exaggerated cartoon proportions\n"
    "- Reference: Silver and Bronze Age superhero comics, printed children's comics\n"
    "The uploaded photo is only for facial identity and body shape: convert the character "
    "into a cartoon comic version with the same clothes, colours, hairstyle and face in "
    "every panel.\n"
    "Output only the image. No text, captions or speech bubbles."
)

_CONSISTENCY_DIRECTIVE = (
    "The character must keep the exact same appearance, facial features, clothing and "
    "visual style in every panel, rendered in comic book illustration style."
)

_CONSISTENT_FEATURES = (
    "Facial features, hair colour and style, eye colour, body proportions and clothing "
    "style stay identical across all panels."
)


@dataclass
class CharacterDescription:
    """Appearance notes for one named character."""

    name: str
    physical_description: str
    consistent_features: str = _CONSISTENT_FEATURES


def create_character_description(name: str, details: str | None = None) -> CharacterDescription:
    """Build the default description for a character known only by name."""
    base = f"Named {name}, a character with consistent appearance throughout the comic."
    if details:
        return CharacterDescription(name=name, physical_description=f"{base} {details}")
    return CharacterDescription(
        name=name,
        physical_description=(
            f"{base} Keeps the same facial features, hair style and clothing as shown "
            f"in {REFERENCE_IMAGE_CONTEXT}."
        ),
    )


def describe_cast(character_names: list[str]) -> str:
    """Human-readable cast line: main character, plus the second if any."""
    main = character_names[0] if character_names else DEFAULT_MAIN_CHARACTER
    if len(character_names) > 1 and character_names[1]:
        return f"{main} and {character_names[1]}"
    return main


def build_character_consistency_prompt(descriptions: list[CharacterDescription]) -> str:
    if not descriptions:
        return ""
    details = " | ".join(
        f"{d.name}: {d.physical_description} {d.consistent_features}" for d in descriptions
    )
    return f"CHARACTER CONSISTENCY REQUIREMENTS:\n{details}\n\n{_CONSISTENCY_DIRECTIVE}"


def enhance_scene_with_characters(
    scene: str,
    character_names: list[str],
    descriptions: list[CharacterDescription],
) -> str:
    """Append the descriptions of characters named in the panel to the scene.

    A description is relevant when its name and one of ``character_names``
    contain each other, case-insensitively.
    """
    lowered = [n.lower() for n in character_names]
    relevant = [
        d
        for d in descriptions
        if any(d.name.lower() in n or n in d.name.lower() for n in lowered)
    ]
    if not relevant:
        return scene

    context = ", ".join(f"{d.name} ({d.physical_description})" for d in relevant)
    return (
        f"{scene.rstrip('.')}. Characters present: {context}. "
        "Ensure these characters keep their exact appearance as described."
    )


def panel_layout(panel_index: int) -> tuple[str, str]:
    """Return ``(placement, aspect_ratio)`` for a 1-based panel index.

    Panels 1-4 sit side by side in the top and middle rows; panel 5 spans the
    full width of the bottom row.
    """
    if panel_index == PANEL_COUNT:
        return (
            "full-width panel at the bottom of the page",
            "16:9 landscape format (wider than tall)",
        )
    return (
        "side-by-side panel in the top or middle row",
        "4:3 or square format (slightly wider than tall)",
    )


def build_script_prompt(category: str, source_type: str, character_names: list[str]) -> str:
    """Compile the prompt for the five-panel script request.

    Args:
        category: Story genre, one of :data:`comicforge.api.models.Category`.
        source_type: ``"Predefined"`` to retell a classic trope of the genre,
            ``"AI"`` for an original story.
        character_names: Cast, main character first.

    Returns:
        The compiled prompt string.
    """
    main = character_names[0] if character_names else DEFAULT_MAIN_CHARACTER
    source = (
        "Pick a classic trope from this category"
        if source_type == "Predefined"
        else "Create a fresh, original short story"
    )

    parts = [
        "You are the engine of a comic-story creation app for kids. Write a complete "
        "5-panel comic story that fits on a single page, in very simple English for "
        "children aged 5 to 8.",
        "Inputs:\n"
        f"1. Characters: {describe_cast(character_names)}. "
        "(The main character looks like the person in the uploaded photo.)\n"
        f"2. Category: {category}\n"
        f"3. Story source: {source}",
        _CONSISTENCY_RULES.format(main=main),
        _SCRIPT_STYLE_RULES,
        _STORY_STRUCTURE,
        _OUTPUT_CONSTRAINTS,
    ]
    return "\n\n".join(parts)


def build_panel_prompt(
    scene: str,
    character_names: list[str],
    panel_index: int,
    descriptions: list[CharacterDescription] | None = None,
) -> str:
    """Compile the image prompt for one panel.

    Args:
        scene: Scene description produced by the script step.
        character_names: Cast, main character first.
        panel_index: 1-based position of the panel (``1..5``).
        descriptions: Explicit character descriptions.  When omitted, default
            descriptions are derived from ``character_names``.

    Returns:
        The compiled prompt string.
    """
    if descriptions is None:
        descriptions = [create_character_description(n) for n in character_names]

    placement, aspect_ratio = panel_layout(panel_index)
    parts = [
        _NEGATIVE_STYLE_GUARD,
        f"Create comic book panel {panel_index} of {PANEL_COUNT}.\n"
        f"Scene: {enhance_scene_with_characters(scene.strip(), character_names, descriptions)}",
    ]

    if character_names:
        parts.append(
            f"The main character {character_names[0]} must closely resemble the person in "
            f"{REFERENCE_IMAGE_CONTEXT}, drawn as a cartoon with bold lines and vibrant colours."
        )

    consistency = build_character_consistency_prompt(descriptions)
    if consistency:
        parts.append(consistency)

    parts.append(_STYLE_CONTRACT)
    parts.append(f"LAYOUT:\n- {placement}\n- {aspect_ratio}\n- No cropped faces or limbs")

    return "\n\n".join(parts)
