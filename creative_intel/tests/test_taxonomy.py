import pytest

from creative_intel import taxonomy


def _valid_visual_tags():
    return {dim: values[0] for dim, values in taxonomy.VISUAL_TAXONOMY.items()}


class TestRegistries:
    def test_dimension_counts(self):
        assert len(taxonomy.VISUAL_TAXONOMY) == 12
        assert len(taxonomy.VIDEO_TAXONOMY) == 7
        assert len(taxonomy.VIDEO_MODEL_TAXONOMY) == 6
        assert "video_duration_bucket" not in taxonomy.VIDEO_MODEL_TAXONOMY

    def test_all_dimensions_merges_both_registries(self):
        assert set(taxonomy.ALL_DIMENSIONS) == set(taxonomy.VISUAL_TAXONOMY) | set(taxonomy.VIDEO_TAXONOMY)

    def test_registries_are_read_only(self):
        with pytest.raises(TypeError):
            taxonomy.VISUAL_TAXONOMY["new_dimension"] = ("a",)

    def test_is_valid_value(self):
        assert taxonomy.is_valid_value("format_type", "static_image")
        assert taxonomy.is_valid_value("pacing", "mixed")
        assert not taxonomy.is_valid_value("format_type", "hologram")
        assert not taxonomy.is_valid_value("unknown_dimension", "static_image")


class TestValidation:
    def test_complete_response_is_valid(self):
        assert taxonomy.validate_tag_set(_valid_visual_tags()) == []

    def test_missing_dimension_is_reported(self):
        tags = _valid_visual_tags()
        del tags["color_temperature"]

        errors = taxonomy.validate_tag_set(tags)
        assert errors == ["Missing dimension: color_temperature"]

    def test_disallowed_value_is_reported(self):
        tags = _valid_visual_tags()
        tags["format_type"] = "hologram"

        errors = taxonomy.validate_tag_set(tags)
        assert len(errors) == 1
        assert 'Invalid value for format_type: "hologram"' in errors[0]

    def test_non_string_value_is_rejected(self):
        tags = _valid_visual_tags()
        tags["pacing"] = 3

        errors = taxonomy.validate_tag_set({**tags, "pacing": 3}, taxonomy.VIDEO_MODEL_TAXONOMY)
        assert any("pacing" in e for e in errors)

    def test_normalize_drops_extra_keys(self):
        tags = {**_valid_visual_tags(), "confidence": "high"}

        normalized = taxonomy.normalize_tag_set(tags)
        assert "confidence" not in normalized
        assert len(normalized) == 12


class TestPrompts:
    def test_image_prompt_lists_every_dimension(self):
        prompt = taxonomy.build_classification_prompt()

        assert "exactly 12 dimensions" in prompt
        for dim in taxonomy.VISUAL_TAXONOMY:
            assert f'"{dim}"' in prompt

    def test_video_prompt_uses_placeholder_without_speech(self):
        prompt = taxonomy.build_video_classification_prompt("   ", {})

        assert taxonomy.NO_SPEECH_PLACEHOLDER in prompt
        assert "unavailable" in prompt
        assert "video_duration_bucket" not in prompt

    def test_video_prompt_includes_hook_context(self):
        prompt = taxonomy.build_video_classification_prompt(
            "Tired of bad sleep?", {"format_type": "ugc_talking_head"}
        )

        assert "Tired of bad sleep?" in prompt
        assert "format_type: ugc_talking_head" in prompt


class TestDurationBucket:
    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0, "under_15s"),
            (14.9, "under_15s"),
            (15, "15_to_30s"),
            (29.99, "15_to_30s"),
            (30, "30_to_60s"),
            (59.5, "30_to_60s"),
            (60, "over_60s"),
            (240, "over_60s"),
        ],
    )
    def test_boundaries(self, seconds, expected):
        assert taxonomy.duration_bucket(seconds) == expected


def test_prefix_hook_tags():
    assert taxonomy.prefix_hook_tags({"format_type": "static_image"}) == {
        "hook_format_type": "static_image"
    }
