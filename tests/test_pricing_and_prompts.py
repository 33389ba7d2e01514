"""Price list and prompt builder tests."""

import pytest

from brandforge.jobs.payloads import JobType, MemeQuality
from brandforge.pipelines.prompts import (
    EDIT_SUFFIX,
    LOGO_DIRECTIONS,
    MAX_PROMPT_LENGTH,
    MEME_TEXT_RULE,
    build_edit_prompt,
    build_icon_prompt,
    build_logo_prompts,
    build_meme_prompt,
    build_sticker_prompt,
    sticker_variation,
    validate_prompt,
)
from brandforge.services.pricing import LOGO_COST, quote


class TestQuote:
    """Pre-enqueue pricing."""

    def test_first_logo_is_free(self):
        price = quote(JobType.LOGO, free_used=False)

        assert price.cost == 0
        assert price.uses_free_generation is True

    def test_logo_after_grant_costs_full_price(self):
        price = quote(JobType.LOGO, free_used=True)

        assert price.cost == LOGO_COST
        assert price.uses_free_generation is False

    def test_first_sticker_of_batch_is_free(self):
        price = quote(JobType.STICKER, free_used=False, count=4)

        assert price.unit_costs == [0, 50, 50, 50]
        assert price.cost == 150
        assert price.uses_free_generation is True

    def test_sticker_batch_without_grant(self):
        price = quote(JobType.STICKER, free_used=True, count=5)

        assert price.unit_costs == [50] * 5
        assert price.cost == 250

    @pytest.mark.parametrize(
        "quality,cost",
        [(MemeQuality.GOOD, 50), (MemeQuality.MEDIUM, 70), (MemeQuality.HIGH, 90), (None, 50)],
    )
    def test_meme_after_grant_is_priced_by_quality(self, quality, cost):
        price = quote(JobType.MEME, free_used=True, quality=quality)

        assert price.cost == cost
        assert price.uses_free_generation is False
        assert price.unit_costs == [cost]

    def test_first_meme_is_free(self):
        price = quote(JobType.MEME, free_used=False, quality=MemeQuality.HIGH)

        assert price.cost == 0
        assert price.uses_free_generation is True
        assert price.unit_costs == [0]

    def test_edit_is_free_and_package_is_configurable(self):
        assert quote(JobType.EDIT, free_used=True).cost == 0
        assert quote(JobType.PACKAGE, free_used=True, package_cost=40).cost == 40

    def test_sticker_count_must_be_positive(self):
        with pytest.raises(ValueError):
            quote(JobType.STICKER, free_used=True, count=0)


class TestPrompts:
    """Prompt builders."""

    def test_validate_prompt(self):
        assert validate_prompt("  a fox  ") == "a fox"
        with pytest.raises(ValueError, match="empty"):
            validate_prompt("   ")
        with pytest.raises(ValueError, match="maximum length"):
            validate_prompt("x" * (MAX_PROMPT_LENGTH + 1))

    def test_logo_prompts_have_distinct_directions(self):
        session = {"tagline": "Build faster", "vibe": ["bold", "friendly"]}

        prompts = build_logo_prompts(session, "Acme", concepts=2)

        assert len(prompts) == 2
        assert prompts[0] != prompts[1]
        assert prompts[0].startswith(LOGO_DIRECTIONS[0])
        assert prompts[1].startswith(LOGO_DIRECTIONS[1])
        for prompt in prompts:
            assert "Brand Name: Acme" in prompt
            assert "Tagline: Build faster" in prompt
            assert "Brand Vibe: bold, friendly" in prompt
            assert "Target Audience" not in prompt

    def test_logo_concepts_are_bounded(self):
        with pytest.raises(ValueError):
            build_logo_prompts({}, "Acme", concepts=len(LOGO_DIRECTIONS) + 1)
        with pytest.raises(ValueError):
            build_logo_prompts({}, "Acme", concepts=0)

    def test_meme_prompt_skips_placeholder_answers(self):
        session = {
            "topic": "gas fees",
            "audience": "degens",
            "caption": "skip",
            "format": "other",
            "color": "neon",
        }

        prompt = build_meme_prompt(session)

        assert prompt.startswith("Create a viral crypto meme about gas fees for degens")
        assert "Caption" not in prompt
        assert "Format" not in prompt
        assert "Color mood: neon" in prompt
        assert prompt.endswith(MEME_TEXT_RULE)

    def test_meme_prompt_uses_free_text_as_topic(self):
        prompt = build_meme_prompt({}, prompt="cats trading crypto")

        assert "about cats trading crypto" in prompt
        assert "uploaded image" not in prompt

    def test_sticker_prompt_sections_and_variations(self):
        prompt = build_sticker_prompt({"phrases": "gm"}, count=3, style="Pixel")

        assert "=== STICKER CONTEXT ===" in prompt
        assert "Style Theme: Pixel" in prompt
        assert "Sticker Count: 3 stickers" in prompt
        assert 'Text/Phrases/Emojis: "gm"' in prompt
        assert sticker_variation(prompt, 0).endswith("(variation 1)")
        assert sticker_variation(prompt, 0) != sticker_variation(prompt, 1)

    def test_sticker_prompt_defaults(self):
        prompt = build_sticker_prompt({}, count=1)

        assert "Style Theme: Crypto" in prompt
        assert "No specific text requirements" in prompt
        assert "No - create original designs" in prompt

    def test_edit_and_icon_prompts(self):
        assert build_edit_prompt("make it blue.") == f"make it blue. {EDIT_SUFFIX}"
        assert '"Acme"' in build_icon_prompt("Acme")
