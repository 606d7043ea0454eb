"""
ForgeSR - Scale Constraint Validator
=====================================
Decides whether an upscale request is legal for a plan, preset and image size.

Checks run in a fixed order:
1. Plan membership (after the preset cap is applied)
2. Output dimension ceiling
3. Memory budget (may require a tiled upscale)

The validator holds no state beyond its limits; identical inputs always
produce identical verdicts.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .config import ForgeConfig
from .plans import PlanTier, QualityPreset, allowed_scales, coerce_plan, coerce_preset


class RejectReason(str, Enum):
    """Why a request was refused."""
    NOT_IN_PLAN = "not_in_plan"
    EXCEEDS_PIXEL_CEILING = "exceeds_pixel_ceiling"
    TOO_LARGE_TO_SEGMENT = "too_large_to_segment"


@dataclass(frozen=True)
class SegmentPlan:
    """Square tiling of the output image."""
    grid: int              # tiles per side
    segments: int          # grid * grid
    segment_width: int     # output pixels per tile, horizontally
    segment_height: int    # output pixels per tile, vertically


@dataclass(frozen=True)
class Accepted:
    scale: int
    output_width: int
    output_height: int
    kind: str = "accepted"

    @property
    def message(self) -> str:
        return f"{self.scale}x upscale accepted ({self.output_width}×{self.output_height})"


@dataclass(frozen=True)
class Rejected:
    scale: int
    output_width: int
    output_height: int
    reason: RejectReason
    suggested_scale: Optional[int] = None
    message: str = ""
    kind: str = "rejected"


@dataclass(frozen=True)
class SegmentRequired:
    scale: int
    output_width: int
    output_height: int
    plan: SegmentPlan
    kind: str = "segment_required"

    @property
    def message(self) -> str:
        return (
            f"The result ({self.output_width}×{self.output_height}) exceeds the memory budget; "
            f"it must be split into {self.plan.segments} segments "
            f"({self.plan.grid}×{self.plan.grid} grid)"
        )


Verdict = Union[Accepted, Rejected, SegmentRequired]


class ScaleConstraintValidator:
    """
    Pure scale constraint checks.

    Limits come from ForgeConfig and are fixed at construction time.
    """

    def __init__(self, config: Optional[ForgeConfig] = None):
        config = config or ForgeConfig()
        self.dimension_limit = config.dimension_limit
        self.memory_budget_bytes = config.memory_budget_bytes
        self.bytes_per_pixel = config.bytes_per_pixel
        self.max_segments = config.max_segments

    def validate(
        self,
        plan: PlanTier,
        preset: QualityPreset,
        width: int,
        height: int,
        scale: int
    ) -> Verdict:
        """
        Validate an upscale request.

        Args:
            plan: Subscription tier
            preset: Quality preset
            width: Source width in pixels
            height: Source height in pixels
            scale: Requested scale factor

        Returns:
            Accepted, Rejected or SegmentRequired

        Raises:
            ValueError: If dimensions or scale are not positive integers
        """
        plan = coerce_plan(plan)
        preset = coerce_preset(preset)
        for name, value in (("width", width), ("height", height), ("scale", scale)):
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

        out_w, out_h = width * scale, height * scale
        allowed = allowed_scales(plan, preset)

        # 1. Plan membership
        if scale not in allowed:
            lower = [s for s in allowed if s < scale]
            return Rejected(
                scale=scale,
                output_width=out_w,
                output_height=out_h,
                reason=RejectReason.NOT_IN_PLAN,
                suggested_scale=lower[-1] if lower else None,
                message=(
                    f"Your current plan ({plan.value}) does not support {scale}x "
                    f"for {preset.value} images. Allowed: {', '.join(f'{s}x' for s in allowed)}"
                ),
            )

        # 2. Output dimension ceiling
        longest = max(width, height)
        if longest * scale > self.dimension_limit:
            fitting = self.dimension_limit // longest
            return Rejected(
                scale=scale,
                output_width=out_w,
                output_height=out_h,
                reason=RejectReason.EXCEEDS_PIXEL_CEILING,
                suggested_scale=fitting if fitting >= 1 else None,
                message=(
                    f"This image ({width}×{height}) is too large for {scale}x upscaling; "
                    f"the longest edge may not exceed {self.dimension_limit}px"
                ),
            )

        # 3. Memory budget
        grid = self.segment_grid(width, height, scale)
        if grid == 1:
            return Accepted(scale=scale, output_width=out_w, output_height=out_h)

        if grid * grid > self.max_segments:
            return Rejected(
                scale=scale,
                output_width=out_w,
                output_height=out_h,
                reason=RejectReason.TOO_LARGE_TO_SEGMENT,
                suggested_scale=self._largest_segmentable(allowed, width, height, below=scale),
                message=(
                    f"This upscale would require {grid * grid} segments, "
                    f"more than the {self.max_segments} supported"
                ),
            )

        return SegmentRequired(
            scale=scale,
            output_width=out_w,
            output_height=out_h,
            plan=SegmentPlan(
                grid=grid,
                segments=grid * grid,
                segment_width=math.ceil(out_w / grid),
                segment_height=math.ceil(out_h / grid),
            ),
        )

    def segment_grid(self, width: int, height: int, scale: int) -> int:
        """Smallest n with n² ≥ required_bytes / budget_bytes (1 when within budget)."""
        required = width * height * scale * scale * self.bytes_per_pixel
        budget = self.memory_budget_bytes
        if required <= budget:
            return 1
        n = max(2, math.isqrt(required // budget))
        while n * n * budget < required:
            n += 1
        return n

    def max_allowed_scale(
        self,
        plan: PlanTier,
        preset: QualityPreset,
        width: int,
        height: int
    ) -> Optional[int]:
        """Largest allowed scale that validates as Accepted, or None."""
        longest = max(width, height)
        for scale in reversed(allowed_scales(plan, preset)):
            if longest * scale <= self.dimension_limit and self.segment_grid(width, height, scale) == 1:
                return scale
        return None

    def _largest_segmentable(self, allowed, width: int, height: int, below: int) -> Optional[int]:
        longest = max(width, height)
        for scale in reversed(allowed):
            if scale >= below or longest * scale > self.dimension_limit:
                continue
            grid = self.segment_grid(width, height, scale)
            if grid * grid <= self.max_segments:
                return scale
        return None
