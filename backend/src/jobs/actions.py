"""
Static action table for transform dispatch.

Each action names the variant it produces, the worker job type that
produces it, the payload builder for the broker message and the content
types it applies to. Bundles are named groups of actions.

validate_action_table() is called at application startup; an action or
bundle that does not line up with the entitlement feature list fails
startup instead of surfacing as an "unknown action" at request time.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from src.entitlements.policy import ACTION_FEATURES, BUNDLE_FEATURES


class ActionTableError(RuntimeError):
    """The action table is inconsistent with the known feature list."""


@dataclass(frozen=True)
class ImagePreset:
    name: str
    width: int
    height: int
    quality: int
    crop: bool = False


PRESETS: Dict[str, ImagePreset] = {
    "thumbnail": ImagePreset("thumbnail", 300, 300, 85, crop=True),
    "sm": ImagePreset("sm", 640, 0, 85),
    "md": ImagePreset("md", 1024, 0, 85),
    "lg": ImagePreset("lg", 1920, 0, 85),
    "xl": ImagePreset("xl", 2560, 0, 85),
    "og": ImagePreset("og", 1200, 630, 90, crop=True),
    "twitter": ImagePreset("twitter", 1200, 675, 90, crop=True),
    "instagram_square": ImagePreset("instagram_square", 1080, 1080, 90, crop=True),
    "instagram_portrait": ImagePreset("instagram_portrait", 1080, 1350, 90, crop=True),
    "instagram_story": ImagePreset("instagram_story", 1080, 1920, 90, crop=True),
    "pdf_thumbnail": ImagePreset("pdf_thumbnail", 300, 300, 85),
}

DEFAULT_WEBP_QUALITY = 85
WATERMARK_POSITIONS = frozenset({"top-left", "top-right", "bottom-left", "bottom-right", "center"})
DEFAULT_WATERMARK_POSITION = "bottom-right"
DEFAULT_WATERMARK_OPACITY = 0.5
WATERMARK_BRAND = "file.cheap"
HLS_RESOLUTIONS = (480, 720, 1080)


@dataclass
class PayloadContext:
    """Inputs available to payload builders."""
    file_id: str
    job_id: str
    storage_key: str
    content_type: str
    options: Mapping[str, Any] = field(default_factory=dict)
    custom_watermark: bool = False


PayloadBuilder = Callable[[str, PayloadContext], Dict[str, Any]]
ContentTypePredicate = Callable[[str], bool]


def _is_image(content_type: str) -> bool:
    return content_type.startswith("image/")


def _is_pdf(content_type: str) -> bool:
    return content_type == "application/pdf"


def _is_video(content_type: str) -> bool:
    return content_type.startswith("video/")


def _base_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    return {
        "job_id": ctx.job_id,
        "file_id": ctx.file_id,
        "storage_key": ctx.storage_key,
        "variant_type": variant_type,
    }


def build_preset_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    preset = PRESETS[variant_type]
    payload = _base_payload(variant_type, ctx)
    payload.update({
        "width": preset.width,
        "height": preset.height,
        "quality": preset.quality,
        "crop": preset.crop,
    })
    return payload


def build_webp_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    quality = _int_option(ctx.options, "quality", DEFAULT_WEBP_QUALITY)
    if quality <= 0 or quality > 100:
        quality = DEFAULT_WEBP_QUALITY
    payload = _base_payload(variant_type, ctx)
    payload.update({"format": "webp", "quality": quality})
    return payload


def build_watermark_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    """
    Watermark payload.

    Tiers without custom watermarks always carry the brand mark: the user's
    text becomes "<text> | file.cheap", or just the brand when empty.
    """
    text = str(ctx.options.get("text") or "").strip()
    position = ctx.options.get("position") or DEFAULT_WATERMARK_POSITION
    if position not in WATERMARK_POSITIONS:
        position = DEFAULT_WATERMARK_POSITION

    opacity = _float_option(ctx.options, "opacity", DEFAULT_WATERMARK_OPACITY)
    if opacity <= 0:
        opacity = DEFAULT_WATERMARK_OPACITY
    opacity = min(opacity, 1.0)

    if not ctx.custom_watermark:
        text = f"{text} | {WATERMARK_BRAND}" if text else WATERMARK_BRAND

    payload = _base_payload(variant_type, ctx)
    payload.update({
        "text": text,
        "position": position,
        "opacity": opacity,
        "font_size": 24,
        "color": "#FFFFFF",
        "is_premium": ctx.custom_watermark,
    })
    return payload


def build_pdf_preview_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    preset = PRESETS["pdf_thumbnail"]
    page = _int_option(ctx.options, "page", 1)
    payload = _base_payload(variant_type, ctx)
    payload.update({
        "page": max(page, 1),
        "width": preset.width,
        "height": preset.height,
        "quality": preset.quality,
        "format": "png",
    })
    return payload


def build_video_thumbnail_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    payload = _base_payload(variant_type, ctx)
    payload.update({
        "at_percent": 10,
        "width": 320,
        "height": 180,
        "format": "jpeg",
        "quality": 85,
    })
    return payload


def build_hls_payload(variant_type: str, ctx: PayloadContext) -> Dict[str, Any]:
    payload = _base_payload(variant_type, ctx)
    payload.update({
        "resolutions": list(HLS_RESOLUTIONS),
        "segment_duration": 10,
    })
    return payload


def _int_option(options: Mapping[str, Any], key: str, default: int) -> int:
    try:
        return int(options.get(key, default))
    except (TypeError, ValueError):
        return default


def _float_option(options: Mapping[str, Any], key: str, default: float) -> float:
    try:
        return float(options.get(key, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ActionSpec:
    """One row of the action table."""
    action: str
    variant_type: str
    job_type: str
    payload_builder: PayloadBuilder
    accepts: ContentTypePredicate
    feature: str
    content_type_hint: str

    def build_payload(self, ctx: PayloadContext) -> Dict[str, Any]:
        payload = self.payload_builder(self.variant_type, ctx)
        payload["job_type"] = self.job_type
        return payload


def _image_action(action: str, job_type: str, builder: PayloadBuilder = build_preset_payload,
                  variant_type: Optional[str] = None) -> ActionSpec:
    return ActionSpec(
        action=action,
        variant_type=variant_type or action,
        job_type=job_type,
        payload_builder=builder,
        accepts=_is_image,
        feature=action,
        content_type_hint="image/*",
    )


ACTION_TABLE: Dict[str, ActionSpec] = {
    "thumbnail": _image_action("thumbnail", "thumbnail"),
    "sm": _image_action("sm", "resize"),
    "md": _image_action("md", "resize"),
    "lg": _image_action("lg", "resize"),
    "xl": _image_action("xl", "resize"),
    "og": _image_action("og", "resize"),
    "twitter": _image_action("twitter", "resize"),
    "instagram_square": _image_action("instagram_square", "resize"),
    "instagram_portrait": _image_action("instagram_portrait", "resize"),
    "instagram_story": _image_action("instagram_story", "resize"),
    "webp": _image_action("webp", "webp", builder=build_webp_payload),
    "watermark": _image_action(
        "watermark", "watermark", builder=build_watermark_payload, variant_type="watermarked"
    ),
    "pdf_preview": ActionSpec(
        action="pdf_preview",
        variant_type="pdf_preview",
        job_type="pdf_thumbnail",
        payload_builder=build_pdf_preview_payload,
        accepts=_is_pdf,
        feature="pdf_preview",
        content_type_hint="application/pdf",
    ),
    "video_thumbnail": ActionSpec(
        action="video_thumbnail",
        variant_type="video_thumbnail",
        job_type="video_thumbnail",
        payload_builder=build_video_thumbnail_payload,
        accepts=_is_video,
        feature="video_thumbnail",
        content_type_hint="video/*",
    ),
    "hls": ActionSpec(
        action="hls",
        variant_type="hls_master",
        job_type="video_hls",
        payload_builder=build_hls_payload,
        accepts=_is_video,
        feature="hls",
        content_type_hint="video/*",
    ),
}


@dataclass(frozen=True)
class BundleSpec:
    name: str
    feature: str
    actions: Tuple[str, ...]


BUNDLES: Dict[str, BundleSpec] = {
    "responsive": BundleSpec("responsive", "responsive", ("sm", "md", "lg", "xl")),
    "social": BundleSpec(
        "social",
        "social",
        ("og", "twitter", "instagram_square", "instagram_portrait", "instagram_story"),
    ),
}


def get_action(action: str) -> Optional[ActionSpec]:
    return ACTION_TABLE.get(action)


def get_bundle(name: str) -> Optional[BundleSpec]:
    return BUNDLES.get(name)


def validate_action_table(
    actions: Mapping[str, ActionSpec] = ACTION_TABLE,
    bundles: Mapping[str, BundleSpec] = BUNDLES,
    action_features: FrozenSet[str] = ACTION_FEATURES,
    bundle_features: FrozenSet[str] = BUNDLE_FEATURES,
) -> None:
    """
    Check the action table against the entitlement feature list.

    Raises:
        ActionTableError: On any missing, unknown or inconsistent entry
    """
    problems = []

    missing = sorted(action_features - set(actions))
    if missing:
        problems.append(f"features without an action: {', '.join(missing)}")

    for name, spec in actions.items():
        if spec.action != name:
            problems.append(f"action {name!r} registered under the wrong key ({spec.action!r})")
        if spec.feature not in action_features:
            problems.append(f"action {name!r} is gated by unknown feature {spec.feature!r}")
        if spec.payload_builder is build_preset_payload and spec.variant_type not in PRESETS:
            problems.append(f"action {name!r} uses preset payloads but has no preset")

    variant_owners: Dict[str, str] = {}
    for name, spec in actions.items():
        owner = variant_owners.setdefault(spec.variant_type, name)
        if owner != name:
            problems.append(f"actions {owner!r} and {name!r} both produce {spec.variant_type!r}")

    for name, bundle in bundles.items():
        if bundle.feature not in bundle_features:
            problems.append(f"bundle {name!r} is gated by unknown feature {bundle.feature!r}")
        unknown = [a for a in bundle.actions if a not in actions]
        if unknown:
            problems.append(f"bundle {name!r} references unknown actions: {', '.join(unknown)}")

    if problems:
        raise ActionTableError("Invalid action table: " + "; ".join(problems))
