import numpy as np
import pytest


def make_sine(freq, n_samples, sample_rate=44100, amplitude=0.5, phase=0.0):
    t = np.arange(n_samples) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t + phase)).astype(np.float32)


@pytest.fixture
def sine():
    return make_sine
