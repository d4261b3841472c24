"""Audio placement and mixing as an FFmpeg filter_complex fragment.

Each audio clip is trimmed to its in/out points, its timestamps reset, then
delayed by its start offset on every channel. Two or more streams are summed
with ``amix`` at full gain (``normalize=0``): levels are not normalised, so
many overlapping loud clips can clip. A single stream is mapped directly.
"""

from dataclasses import dataclass, field

from clipstack.render.layer_compositor import PlacedClip, format_seconds
from clipstack.schemas.timeline import Clip

MIX_LABEL = "aout"


@dataclass
class AudioGraph:
    """Inputs and filters produced for the audio side of the command."""

    input_args: list[str] = field(default_factory=list)
    filter_parts: list[str] = field(default_factory=list)
    output_label: str | None = None
    stream_count: int = 0

    @property
    def mixed(self) -> bool:
        return self.stream_count > 1


class AudioMixer:
    """Builds atrim/adelay chains and the final mix stage."""

    def build_clip_filter(self, input_idx: int, clip: Clip) -> tuple[str, str]:
        """Chain for one audio clip. Returns (filter, output label)."""
        label = f"a{input_idx}"
        delay_ms = max(0, int(clip.start * 1000))
        chain = ",".join(
            [
                f"atrim=start={format_seconds(clip.in_point)}:end={format_seconds(clip.out_point)}",
                "asetpts=PTS-STARTPTS",
                f"adelay={delay_ms}:all=1",
            ]
        )
        return f"[{input_idx}:a]{chain}[{label}]", label

    def build(self, clips: list[PlacedClip], first_input_idx: int) -> AudioGraph:
        """Build inputs, per-clip chains and (for 2+ streams) the mix.

        Args:
            clips: Audio clips in enumeration order
            first_input_idx: FFmpeg input index of the first audio clip

        Returns:
            AudioGraph; ``output_label`` is None when there is no audio
        """
        graph = AudioGraph()
        labels: list[str] = []

        for offset, placed in enumerate(clips):
            input_idx = first_input_idx + offset
            graph.input_args.extend(["-i", placed.path])
            clip_filter, label = self.build_clip_filter(input_idx, placed.clip)
            graph.filter_parts.append(clip_filter)
            labels.append(label)

        graph.stream_count = len(labels)
        if len(labels) == 1:
            # Single stream - no mixing needed
            graph.output_label = labels[0]
        elif labels:
            mix_inputs = "".join(f"[{label}]" for label in labels)
            graph.filter_parts.append(f"{mix_inputs}amix=inputs={len(labels)}:normalize=0[{MIX_LABEL}]")
            graph.output_label = MIX_LABEL

        return graph
