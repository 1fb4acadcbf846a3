"""Static action table: startup validation and payload builders."""

from dataclasses import replace

import pytest

from src.entitlements.policy import ACTION_FEATURES
from src.jobs.actions import (
    ACTION_TABLE,
    BUNDLES,
    WATERMARK_BRAND,
    ActionTableError,
    BundleSpec,
    PayloadContext,
    get_action,
    get_bundle,
    validate_action_table,
)


def _ctx(**overrides):
    values = dict(
        file_id="file-1",
        job_id="job-1",
        storage_key="uploads/u/file-1/a.png",
        content_type="image/png",
    )
    values.update(overrides)
    return PayloadContext(**values)


class TestValidation:
    def test_shipped_table_is_valid(self):
        validate_action_table()

    def test_every_action_feature_has_an_action(self):
        assert set(ACTION_TABLE) == set(ACTION_FEATURES)

    def test_missing_action_fails(self):
        actions = dict(ACTION_TABLE)
        del actions["md"]
        with pytest.raises(ActionTableError, match="features without an action: md"):
            validate_action_table(actions=actions, bundles={})

    def test_wrong_key_fails(self):
        actions = dict(ACTION_TABLE)
        actions["md"] = ACTION_TABLE["lg"]
        with pytest.raises(ActionTableError, match="wrong key"):
            validate_action_table(actions=actions)

    def test_duplicate_variant_fails(self):
        actions = dict(ACTION_TABLE)
        actions["md"] = replace(ACTION_TABLE["md"], variant_type="lg")
        with pytest.raises(ActionTableError, match="both produce 'lg'"):
            validate_action_table(actions=actions)

    def test_bundle_with_unknown_member_fails(self):
        bundles = dict(BUNDLES)
        bundles["responsive"] = BundleSpec("responsive", "responsive", ("sm", "xxl"))
        with pytest.raises(ActionTableError, match="unknown actions: xxl"):
            validate_action_table(bundles=bundles)

    def test_bundle_with_unknown_feature_fails(self):
        bundles = {"print": BundleSpec("print", "print", ("sm",))}
        with pytest.raises(ActionTableError, match="unknown feature 'print'"):
            validate_action_table(bundles=bundles)


class TestLookup:
    def test_unknown_action(self):
        assert get_action("sepia") is None

    def test_watermark_produces_watermarked_variant(self):
        assert get_action("watermark").variant_type == "watermarked"

    def test_bundles(self):
        assert get_bundle("responsive").actions == ("sm", "md", "lg", "xl")
        assert len(get_bundle("social").actions) == 5
        assert get_bundle("print") is None

    def test_content_type_predicates(self):
        assert get_action("pdf_preview").accepts("application/pdf") is True
        assert get_action("pdf_preview").accepts("image/png") is False
        assert get_action("hls").accepts("video/mp4") is True
        assert get_action("thumbnail").accepts("video/mp4") is False


class TestPayloads:
    def test_preset_payload(self):
        payload = get_action("thumbnail").build_payload(_ctx())
        assert payload["job_type"] == "thumbnail"
        assert (payload["width"], payload["height"], payload["quality"]) == (300, 300, 85)
        assert payload["crop"] is True
        assert payload["job_id"] == "job-1"

    def test_resize_preset_keeps_aspect(self):
        payload = get_action("md").build_payload(_ctx())
        assert payload["job_type"] == "resize"
        assert payload["width"] == 1024
        assert payload["height"] == 0

    def test_webp_quality_out_of_range_uses_default(self):
        payload = get_action("webp").build_payload(_ctx(options={"quality": 150}))
        assert payload["quality"] == 85

    def test_watermark_is_branded_without_custom_watermark(self):
        payload = get_action("watermark").build_payload(
            _ctx(options={"text": "ACME", "position": "nowhere", "opacity": 7})
        )
        assert payload["text"] == f"ACME | {WATERMARK_BRAND}"
        assert payload["position"] == "bottom-right"
        assert payload["opacity"] == 1.0
        assert payload["is_premium"] is False

    def test_watermark_custom_text_kept_for_premium(self):
        payload = get_action("watermark").build_payload(
            _ctx(options={"text": "ACME"}, custom_watermark=True)
        )
        assert payload["text"] == "ACME"
        assert payload["opacity"] == 0.5

    def test_pdf_preview_page_floor(self):
        payload = get_action("pdf_preview").build_payload(
            _ctx(content_type="application/pdf", options={"page": -3})
        )
        assert payload["page"] == 1
        assert payload["format"] == "png"

    def test_hls_resolutions(self):
        payload = get_action("hls").build_payload(_ctx(content_type="video/mp4"))
        assert payload["resolutions"] == [480, 720, 1080]
        assert payload["variant_type"] == "hls_master"
