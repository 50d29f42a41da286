import pytest

from creative_intel import video_vision
from creative_intel.pipeline.errors import RateLimitedError, ResponseParseError, TagValidationError
from creative_intel.vision import ModelResponse


@pytest.fixture
def frames(tmp_path):
    paths = []
    for i in range(4):
        path = tmp_path / f"keyframe_{i:02d}.jpg"
        path.write_bytes(f"frame-{i}".encode())
        paths.append(path)
    return paths


def _scripted(replies):
    """generate_json stand-in that plays back replies (dicts or exceptions) in order."""
    calls = []

    def fake_generate_json(parts, **kwargs):
        calls.append(kwargs)
        reply = replies[len(calls) - 1]
        if isinstance(reply, Exception):
            raise reply
        return ModelResponse(data=reply)

    return fake_generate_json, calls


class TestDetectVisualShifts:
    def test_one_call_per_consecutive_pair(self, monkeypatch, frames):
        fake, calls = _scripted([
            {"changed": False},
            {"changed": True, "description": "cut to product"},
            {"changed": "true", "description": ""},
        ])
        monkeypatch.setattr(video_vision, "generate_json", fake)

        shifts = video_vision.detect_visual_shifts(frames, ad_id="ad-1")

        assert len(calls) == 3
        assert all(c["stage"] == "shift_detection" for c in calls)
        assert [(s.frame_index, s.description) for s in shifts] == [
            (2, "cut to product"),
            (3, video_vision.DEFAULT_SHIFT_DESCRIPTION),
        ]

    def test_unparseable_pair_is_skipped(self, monkeypatch, frames):
        fake, calls = _scripted([
            ResponseParseError(stage_name="shift_detection"),
            {"changed": True, "description": "new scene"},
            {"changed": False},
        ])
        monkeypatch.setattr(video_vision, "generate_json", fake)

        shifts = video_vision.detect_visual_shifts(frames, ad_id="ad-2")

        assert len(calls) == 3
        assert [s.frame_index for s in shifts] == [2]

    def test_rate_limit_stops_early_keeping_found_shifts(self, monkeypatch, frames):
        fake, calls = _scripted([
            {"changed": True, "description": "opening cut"},
            RateLimitedError(stage_name="shift_detection"),
        ])
        monkeypatch.setattr(video_vision, "generate_json", fake)

        shifts = video_vision.detect_visual_shifts(frames, ad_id="ad-3")

        assert len(calls) == 2
        assert [s.frame_index for s in shifts] == [1]

    def test_single_frame_has_no_pairs(self, monkeypatch, frames):
        fake, calls = _scripted([])
        monkeypatch.setattr(video_vision, "generate_json", fake)

        assert video_vision.detect_visual_shifts(frames[:1], ad_id="ad-4") == []
        assert calls == []


class TestClassifyVideoTags:
    def test_uses_video_model_taxonomy(self, monkeypatch):
        fake, calls = _scripted([{"pacing": "mixed"}])
        monkeypatch.setattr(video_vision, "generate_json", fake)

        tags = video_vision.classify_video_tags("hello there", {"format_type": "static_image"}, ad_id="ad-5")

        assert tags == {"pacing": "mixed"}
        assert calls[0]["stage"] == "video_tagging"
        assert "video_duration_bucket" not in calls[0]["taxonomy"]

    def test_validation_errors_propagate(self, monkeypatch):
        fake, _ = _scripted([TagValidationError(["Missing dimension: pacing"], "video_tagging")])
        monkeypatch.setattr(video_vision, "generate_json", fake)

        with pytest.raises(TagValidationError):
            video_vision.classify_video_tags(None, {}, ad_id="ad-6")


def test_hook_frame_is_classified_as_jpeg(monkeypatch, frames):
    seen = {}

    def fake_classify(data, **kwargs):
        seen.update(kwargs, data=data)
        return "result"

    monkeypatch.setattr(video_vision, "classify_image_bytes", fake_classify)

    assert video_vision.classify_hook_frame(frames[0], ad_id="ad-7") == "result"
    assert seen["data"] == b"frame-0"
    assert seen["stage"] == "hook_tagging"
    assert seen["mime_type"] == "image/jpeg"
