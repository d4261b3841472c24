"""Timeline to FFmpeg command compiler.

Pure translation of a Timeline plus its resolved files into the argument
vector for one encode:

1. Fixed 1920x1080 canvas (source dimensions are ignored)
2. Duration = longest clip end (10s floor) + 1s margin, rounded up
3. Input 0: black ``color`` source for the whole duration
4. Video clips: trimmed, fitted, padded, shifted and overlaid in z-order
5. Audio clips: trimmed, delayed and mixed at full gain
6. H.264/AAC MP4 with ``+faststart``

The same inputs always give byte-identical arguments.
"""

import logging
import math
from dataclasses import dataclass

from clipstack.exceptions import CompileError
from clipstack.render.audio_mixer import AudioMixer
from clipstack.render.layer_compositor import BASE_LABEL, LayerCompositor, PlacedClip, format_seconds
from clipstack.schemas.render import Preset, RenderOptions, Rendition
from clipstack.schemas.timeline import ResolvedFile, Timeline

logger = logging.getLogger(__name__)

CANVAS_WIDTH = 1920
CANVAS_HEIGHT = 1080
MIN_DURATION_S = 10
DURATION_MARGIN_S = 1
AUDIO_BITRATE = "192k"
PIXEL_FORMAT = "yuv420p"

# preset -> (x264 preset, crf)
PRESET_SETTINGS: dict[Preset, tuple[str, int]] = {
    Preset.FAST: ("veryfast", 23),
    Preset.QUALITY: ("veryslow", 18),
    Preset.BALANCED: ("medium", 20),
}


@dataclass(frozen=True)
class CompiledCommand:
    """FFmpeg arguments for one encode, without binary and output path."""

    args: tuple[str, ...]
    duration: int
    video_clip_count: int
    audio_clip_count: int
    overlay_count: int
    audio_mixed: bool
    skipped_file_ids: tuple[str, ...] = ()

    @property
    def filter_complex(self) -> str | None:
        if "-filter_complex" not in self.args:
            return None
        return self.args[self.args.index("-filter_complex") + 1]

    @property
    def input_count(self) -> int:
        return self.args.count("-i")


@dataclass(frozen=True)
class ResolvedTimeline:
    video: list[PlacedClip]
    audio: list[PlacedClip]
    skipped_file_ids: tuple[str, ...]


def resolve_clips(
    timeline: Timeline,
    files: list[ResolvedFile],
    strict: bool = False,
) -> ResolvedTimeline:
    """Pair clips with their files, in track then clip order.

    Clips whose file is not in ``files`` are skipped (best-effort rendering)
    unless ``strict`` is set, in which case CompileError is raised.
    """
    paths: dict[str, str] = {}
    for f in files:
        paths.setdefault(f.id, f.path)

    video: list[PlacedClip] = []
    audio: list[PlacedClip] = []
    skipped: list[str] = []

    for track_index, track in enumerate(timeline.tracks):
        for clip in track.clips:
            path = paths.get(clip.file_id)
            if path is None:
                if strict:
                    raise CompileError(clip.file_id)
                logger.warning(f"[COMPILE] Clip fileId={clip.file_id} not resolved, skipping")
                skipped.append(clip.file_id)
                continue
            placed = PlacedClip(clip=clip, path=path, track_index=track_index)
            if track.kind == "video":
                video.append(placed)
            else:
                audio.append(placed)

    return ResolvedTimeline(video=video, audio=audio, skipped_file_ids=tuple(skipped))


def compute_duration(clips: list[PlacedClip]) -> int:
    """Output duration in whole seconds.

    No clips: exactly the 10s floor. Otherwise the longest clip end, floored
    at 10s, plus the 1s margin, rounded up.
    """
    if not clips:
        return MIN_DURATION_S
    longest = max([float(MIN_DURATION_S), *(p.clip.end for p in clips)])
    return math.ceil(longest + DURATION_MARGIN_S)


def compile_command(
    timeline: Timeline,
    files: list[ResolvedFile],
    options: RenderOptions | None = None,
    *,
    strict: bool = False,
) -> CompiledCommand:
    """Compile a timeline into FFmpeg arguments.

    Args:
        timeline: Tracks and clips to render
        files: Resolved source files referenced by clip fileId
        options: Preset and renditions; the first rendition sets output height
        strict: Raise CompileError instead of skipping unresolved clips

    Returns:
        CompiledCommand; the executor adds binary and output path
    """
    options = options or RenderOptions()
    resolved = resolve_clips(timeline, files, strict=strict)
    duration = compute_duration(resolved.video + resolved.audio)
    fps = format_seconds(timeline.fps)

    inputs = [
        "-f", "lavfi",
        "-t", str(duration),
        "-r", fps,
        "-i", f"color=c=black:s={CANVAS_WIDTH}x{CANVAS_HEIGHT}",
    ]

    compositor = LayerCompositor(CANVAS_WIDTH, CANVAS_HEIGHT)
    video_graph = compositor.build(resolved.video, first_input_idx=1)

    # Audio inputs follow all video inputs
    mixer = AudioMixer()
    audio_graph = mixer.build(resolved.audio, first_input_idx=1 + len(resolved.video))

    filter_parts = video_graph.filter_parts + audio_graph.filter_parts

    video_label = video_graph.output_label
    rendition = options.renditions[0]
    if rendition.height < CANVAS_HEIGHT:
        filter_parts.append(f"[{video_label}]scale=-2:{rendition.height}[vout]")
        video_label = "vout"

    args = [*inputs, *video_graph.input_args, *audio_graph.input_args]
    if filter_parts:
        args.extend(["-filter_complex", ";".join(filter_parts)])

    args.extend(["-map", BASE_LABEL if video_label == BASE_LABEL else f"[{video_label}]"])
    if audio_graph.output_label:
        args.extend(["-map", f"[{audio_graph.output_label}]", "-c:a", "aac", "-b:a", AUDIO_BITRATE])
    else:
        # No audio inputs; explicitly disable audio
        args.append("-an")

    x264_preset, crf = PRESET_SETTINGS[options.preset]
    args.extend([
        "-c:v", "libx264",
        "-preset", x264_preset,
        "-crf", str(crf),
        "-pix_fmt", PIXEL_FORMAT,
        "-t", str(duration),
        "-movflags", "+faststart",
    ])

    logger.info(
        f"[COMPILE] duration={duration}s video={len(resolved.video)} audio={len(resolved.audio)} "
        f"skipped={len(resolved.skipped_file_ids)} preset={options.preset.value} rendition={rendition.value}"
    )

    return CompiledCommand(
        args=tuple(args),
        duration=duration,
        video_clip_count=len(resolved.video),
        audio_clip_count=len(resolved.audio),
        overlay_count=video_graph.overlay_count,
        audio_mixed=audio_graph.mixed,
        skipped_file_ids=resolved.skipped_file_ids,
    )
