"""PCM conversion and level utilities."""
import numpy as np


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Runtime-safe, adapter-agnostic utility.
    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the dangling byte
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    return audio_f32


def rms_level(pcm_bytes: bytes) -> float:
    """
    RMS level of a PCM16 buffer, clamped to [0.0, 1.0].

    Empty input is silence (0.0).
    """
    samples = pcm16le_to_float32(pcm_bytes)
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(samples))))
    return min(max(rms, 0.0), 1.0)


def is_pcm_format(audio_format: str | None) -> bool:
    """True for the raw PCM16 output formats ("pcm_16000", "pcm_44100", ...)."""
    return audio_format is not None and audio_format.startswith("pcm_")


def apply_gain(pcm_bytes: bytes, gain: float) -> bytes:
    """
    Scale PCM16 little-endian samples by `gain`, clipping to int16.

    A gain of 1.0 returns the input unchanged.
    """
    if gain == 1.0:
        return pcm_bytes
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]
    samples = np.frombuffer(pcm_bytes, dtype="<i2").astype(np.float32) * gain
    return np.clip(samples, -32768, 32767).astype("<i2").tobytes()


class LevelMeter:
    """
    Tracks the most recent input/output RMS levels.

    Feeds the on_levels callback. Drawing the levels is not done here.
    output_gain is the playback volume in [0.0, 1.0]; the output level is
    reported after it is applied.
    """

    def __init__(self) -> None:
        self.input_level = 0.0
        self.output_level = 0.0
        self.output_gain = 1.0

    def set_output_gain(self, gain: float) -> float:
        gain = float(gain)
        if not np.isfinite(gain):
            raise ValueError(f"gain must be finite, got {gain!r}")
        self.output_gain = min(max(gain, 0.0), 1.0)
        return self.output_gain

    def observe_input(self, pcm_bytes: bytes) -> float:
        self.input_level = rms_level(pcm_bytes)
        return self.input_level

    def observe_output(self, pcm_bytes: bytes) -> float:
        self.output_level = rms_level(pcm_bytes) * self.output_gain
        return self.output_level

    def reset(self) -> None:
        self.input_level = 0.0
        self.output_level = 0.0
