"""Video layer compositing as an FFmpeg filter_complex fragment.

Every video clip becomes one input and one filter chain:

    trim -> reset PTS -> fit into canvas -> pad/center on black -> shift PTS by start

The processed streams are then overlaid one after another onto the black base
(input 0), so a clip enumerated later (higher track, later clip) ends up on
top. Each overlay is gated by ``enable='between(t,start,end)'`` so a clip never
lingers on its last frame after its window ends.
"""

from dataclasses import dataclass, field

from clipstack.schemas.timeline import Clip

BASE_LABEL = "0:v"


def format_seconds(value: float) -> str:
    """Deterministic number formatting for filter arguments (no float noise)."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def build_enable_expr(start_s: float, end_s: float) -> str:
    """Overlay enable window, inclusive on both ends."""
    return f"between(t,{format_seconds(start_s)},{format_seconds(end_s)})"


@dataclass(frozen=True)
class PlacedClip:
    """A clip whose file has been resolved to an input path."""

    clip: Clip
    path: str
    track_index: int


@dataclass
class VideoGraph:
    """Inputs and filters produced for the video side of the command."""

    input_args: list[str] = field(default_factory=list)
    filter_parts: list[str] = field(default_factory=list)
    output_label: str = BASE_LABEL
    overlay_count: int = 0

    @property
    def input_count(self) -> int:
        return self.input_args.count("-i")


class LayerCompositor:
    """Builds scale/pad/overlay chains for a fixed-size canvas."""

    def __init__(self, width: int = 1920, height: int = 1080):
        self.width = width
        self.height = height

    def build_clip_filter(self, input_idx: int, clip: Clip) -> tuple[str, str]:
        """Chain for one video clip. Returns (filter, output label)."""
        w, h = self.width, self.height
        label = f"v{input_idx}"
        chain = ",".join(
            [
                f"trim=start={format_seconds(clip.in_point)}:end={format_seconds(clip.out_point)}",
                "setpts=PTS-STARTPTS",
                f"scale={w}:{h}:force_original_aspect_ratio=decrease",
                f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color=black",
                "format=yuva420p",
                f"setpts=PTS+{format_seconds(clip.start)}/TB",
            ]
        )
        return f"[{input_idx}:v]{chain}[{label}]", label

    def build_overlay_filter(self, base_label: str, clip_label: str, clip: Clip, out_label: str) -> str:
        enable_expr = build_enable_expr(clip.start, clip.end)
        return f"[{base_label}][{clip_label}]overlay=format=auto:enable='{enable_expr}'[{out_label}]"

    def build(self, clips: list[PlacedClip], first_input_idx: int = 1) -> VideoGraph:
        """Build inputs, per-clip chains and the overlay stack.

        Args:
            clips: Video clips in enumeration order (bottom to top)
            first_input_idx: FFmpeg input index of the first clip (0 is the base)

        Returns:
            VideoGraph whose ``output_label`` is the final composite
        """
        graph = VideoGraph()
        clip_labels: list[tuple[str, Clip]] = []

        for offset, placed in enumerate(clips):
            input_idx = first_input_idx + offset
            graph.input_args.extend(["-i", placed.path])
            clip_filter, label = self.build_clip_filter(input_idx, placed.clip)
            graph.filter_parts.append(clip_filter)
            clip_labels.append((label, placed.clip))

        current = BASE_LABEL
        for count, (label, clip) in enumerate(clip_labels, start=1):
            out_label = f"base{count}"
            graph.filter_parts.append(self.build_overlay_filter(current, label, clip, out_label))
            current = out_label

        graph.output_label = current
        graph.overlay_count = len(clip_labels)
        return graph
