from clipstack.render.audio_mixer import AudioMixer
from clipstack.render.compiler import CompiledCommand, compile_command
from clipstack.render.executor import ExecutionResult, FFmpegExecutor
from clipstack.render.layer_compositor import LayerCompositor
from clipstack.render.progress import ProgressReporter

__all__ = [
    "AudioMixer",
    "CompiledCommand",
    "ExecutionResult",
    "FFmpegExecutor",
    "LayerCompositor",
    "ProgressReporter",
    "compile_command",
]
