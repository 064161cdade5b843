import slab
import numpy as np

from wav_encoder import AudioBuffer, DEFAULT_SAMPLE_RATE


def sound_to_buffer(sound):
    # slab keeps data as (n_samples, n_channels), which is already frame-major
    samplerate = int(round(sound.samplerate))
    return AudioBuffer.from_frames(sound.data, samplerate)


def buffer_to_sound(buffer):
    frames = np.array(buffer.frames(), dtype=float)
    return slab.Sound(data=frames, samplerate=buffer.sample_rate)


def generate_placeholder_tone(duration=0.35, samplerate=DEFAULT_SAMPLE_RATE, frequency=880.0, level=70,
                              n_channels=1):
    """
    Ramped pure tone used in place of a microphone clip, e.g. when no
    input device is present. At the default level the peak stays well
    below full scale.
    """
    tone = slab.Sound.tone(frequency=frequency, duration=duration, samplerate=samplerate, n_channels=n_channels)
    tone = tone.ramp(when='both', duration=min(0.01, duration / 4))
    tone.level = level
    return sound_to_buffer(tone)
