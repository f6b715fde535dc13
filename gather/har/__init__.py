"""HAR document models and synthesis from protocol event logs."""

from .models import HarDocument, HarEntry, HarLog, HarPage
from .synthesizer import (
    HarSynthesizer,
    SynthesisError,
    synthesize,
    synthesize_with_fallback,
)

__all__ = [
    'HarDocument',
    'HarEntry',
    'HarLog',
    'HarPage',
    'HarSynthesizer',
    'SynthesisError',
    'synthesize',
    'synthesize_with_fallback',
]
