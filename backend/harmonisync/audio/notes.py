"""Conversions between frequencies and note names (A4 = 440 Hz)."""
import math
import re
from dataclasses import dataclass
from typing import Optional

A4_FREQUENCY = 440.0
A4_MIDI_NOTE = 69
NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

_NOTE_PATTERN = re.compile(r"^([A-G]#?)(-?\d+)$")

# Typical singing ranges in Hz
MALE_RANGE = (80.0, 400.0)
FEMALE_RANGE = (150.0, 800.0)


def frequency_to_midi(frequency: float) -> float:
    """Fractional MIDI note number for a frequency."""
    return 12.0 * math.log2(frequency / A4_FREQUENCY) + A4_MIDI_NOTE


def frequency_to_note(frequency: float) -> str:
    """
    Nearest equal-tempered note name for a frequency, e.g. 440.0 -> "A4".

    Raises:
        ValueError: If frequency is not finite and positive
    """
    if not math.isfinite(frequency) or frequency <= 0:
        raise ValueError(f"Frequency must be finite and positive, got {frequency}")

    midi = int(round(frequency_to_midi(frequency)))
    octave = midi // 12 - 1
    return f"{NOTE_NAMES[midi % 12]}{octave}"


def note_to_frequency(note: str) -> float:
    """
    Frequency of a note name, e.g. "C4" -> 261.63.

    Raises:
        ValueError: If the note name cannot be parsed
    """
    match = _NOTE_PATTERN.match(note.strip())
    if not match:
        raise ValueError(f"Invalid note name: {note!r}")
    name, octave = match.group(1), int(match.group(2))
    midi = (octave + 1) * 12 + NOTE_NAMES.index(name)
    return A4_FREQUENCY * 2.0 ** ((midi - A4_MIDI_NOTE) / 12.0)


def note_name(note: str) -> str:
    """Note name without its octave ("C#4" -> "C#")."""
    return re.sub(r"-?\d+", "", note)


def cents_difference(reference_hz: float, frequency_hz: float) -> float:
    """Signed distance from reference to frequency in cents."""
    return 1200.0 * math.log2(frequency_hz / reference_hz)


def is_in_singing_range(frequency: float, is_male: bool = True) -> bool:
    low, high = MALE_RANGE if is_male else FEMALE_RANGE
    return low <= frequency <= high


def note_octave(note: str) -> int:
    """Octave number of a note ("C#4" -> 4)."""
    match = _NOTE_PATTERN.match(note.strip())
    if not match:
        raise ValueError(f"Invalid note name: {note!r}")
    return int(match.group(2))


def is_equivalent_note(detected: str, expected: str, is_male: bool = True) -> bool:
    """
    Whether a sung note counts as the expected one.

    Male singers read treble parts an octave below written pitch, so for
    them the note one octave down is accepted as well.
    """
    if note_name(detected) != note_name(expected):
        return False
    octave_gap = note_octave(expected) - note_octave(detected)
    return octave_gap == 0 or (is_male and octave_gap == 1)


def note_confidence(frequency: float, expected_note: str) -> float:
    """
    Coarse closeness score of a frequency to an expected note.

    Returns:
        1.0 within 1%, falling in steps to 0.1 beyond 20%
    """
    expected_hz = note_to_frequency(expected_note)
    percent_diff = abs(frequency - expected_hz) / expected_hz
    for limit, score in ((0.01, 1.0), (0.02, 0.9), (0.05, 0.8), (0.1, 0.6), (0.2, 0.4)):
        if percent_diff < limit:
            return score
    return 0.1


@dataclass(frozen=True)
class NoteTarget:
    """The note a singer is currently asked to hold."""
    note: str
    is_male: bool = True

    def __post_init__(self):
        # Rejects malformed names up front
        note_to_frequency(self.note)

    def reference_hz(self, detected: Optional[str] = None) -> float:
        """
        Frequency the singer is measured against.

        An octave-down match for a male singer is measured against the
        expected note transposed down an octave.
        """
        expected_hz = note_to_frequency(self.note)
        if detected is not None and is_equivalent_note(detected, self.note, self.is_male):
            return expected_hz / 2.0 ** (note_octave(self.note) - note_octave(detected))
        return expected_hz
