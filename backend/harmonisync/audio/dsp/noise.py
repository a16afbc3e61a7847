"""Noise suppression using a band-wise Wiener gain and an adaptive noise profile."""
from typing import Dict, Optional
import numpy as np
from harmonisync.core.logging import logger

# SNR reported when there is no usable signal or noise estimate
NOISE_FLOOR_DB = -60.0
MAX_SNR_DB = 120.0

_EPSILON = 1e-12


class WienerNoiseSuppressor:
    """
    Attenuates stationary background noise while keeping harmonic voice content.

    The noise profile is a per-bin power spectrum tracked with an exponential
    moving average. It is only updated from frames the voice classifier marked
    unvoiced. That decision is made after this stage has run, so it arrives one
    step late: the suppressor keeps the last frame's power spectrum and folds it
    into the profile on the next call when told that frame was unvoiced.
    """

    def __init__(
        self,
        strength: float = 0.5,
        noise_ema_alpha: float = 0.05,
        gain_floor: float = 0.15,
        default_gain: float = 1.0,
    ):
        """
        Args:
            strength: Scales the applied gain (0.0 = bypass, 1.0 = full Wiener gain)
            noise_ema_alpha: EMA factor for the noise profile
            gain_floor: Minimum Wiener gain per band, avoids musical-noise holes
            default_gain: Gain applied until the first noise update
        """
        self.strength = strength
        self.noise_ema_alpha = noise_ema_alpha
        self.gain_floor = gain_floor
        self.default_gain = default_gain

        self._noise_psd: Optional[np.ndarray] = None
        self._pending_psd: Optional[np.ndarray] = None
        self._snr_db = NOISE_FLOOR_DB
        self._noise_reduction_percent = 0.0
        self._noise_updates = 0

    @property
    def initialized(self) -> bool:
        """True once the noise profile has received an unvoiced-frame update."""
        return self._noise_psd is not None

    @property
    def snr_db(self) -> float:
        return self._snr_db

    @property
    def noise_reduction_percent(self) -> float:
        return self._noise_reduction_percent

    def process(self, samples: np.ndarray, previous_frame_unvoiced: bool = False) -> np.ndarray:
        """
        Clean one frame.

        Args:
            samples: Finite float samples in [-1, 1]
            previous_frame_unvoiced: Voice decision for the frame passed on the
                previous call; True folds that frame into the noise profile

        Returns:
            Cleaned samples, same length as the input
        """
        if previous_frame_unvoiced and self._pending_psd is not None:
            self._update_noise(self._pending_psd)

        n = len(samples)
        if n == 0:
            self._pending_psd = None
            self._snr_db = NOISE_FLOOR_DB
            self._noise_reduction_percent = 0.0
            return np.zeros(0, dtype=np.float64)

        spectrum = np.fft.rfft(samples)
        power = (spectrum.real ** 2 + spectrum.imag ** 2) / n
        self._pending_psd = power

        if self._noise_psd is None or self._noise_psd.shape != power.shape:
            gains = np.full(power.shape, self.default_gain)
            self._snr_db = NOISE_FLOOR_DB
        else:
            gains = self._wiener_gains(power, self._noise_psd)
            self._snr_db = self._filtered_snr_db(power, self._noise_psd, gains)

        cleaned_spectrum = spectrum * gains
        cleaned = np.fft.irfft(cleaned_spectrum, n=n)

        input_energy = float(np.sum(power))
        output_energy = float(np.sum(power * gains ** 2))
        if input_energy > _EPSILON:
            self._noise_reduction_percent = float(
                np.clip(100.0 * (1.0 - output_energy / input_energy), 0.0, 100.0)
            )
        else:
            self._noise_reduction_percent = 0.0

        return np.clip(cleaned, -1.0, 1.0)

    def _wiener_gains(self, power: np.ndarray, noise: np.ndarray) -> np.ndarray:
        """Per-band gain G = S / (S + N), floored and scaled by strength."""
        signal = np.maximum(power - noise, 0.0)
        total = signal + noise
        wiener = np.divide(signal, total, out=np.zeros_like(power), where=total > _EPSILON)
        wiener = np.maximum(wiener, self.gain_floor)
        return 1.0 - self.strength * (1.0 - wiener)

    @staticmethod
    def _filtered_snr_db(power: np.ndarray, noise: np.ndarray, gains: np.ndarray) -> float:
        """Estimated signal-to-residual-noise ratio of the filtered frame in dB."""
        signal = np.maximum(power - noise, 0.0)
        gains_sq = gains ** 2
        signal_power = float(np.sum(gains_sq * signal))
        noise_power = float(np.sum(gains_sq * noise))
        if signal_power <= _EPSILON or noise_power <= _EPSILON:
            return NOISE_FLOOR_DB
        snr = 10.0 * np.log10(signal_power / noise_power)
        return float(np.clip(snr, NOISE_FLOOR_DB, MAX_SNR_DB))

    def _update_noise(self, power: np.ndarray) -> None:
        """Fold an unvoiced frame's power spectrum into the noise profile."""
        if self._noise_psd is None or self._noise_psd.shape != power.shape:
            if self._noise_psd is not None:
                logger.debug(f"Frame size changed ({self._noise_psd.shape} -> {power.shape}), re-seeding noise profile")
            self._noise_psd = power + _EPSILON
        else:
            alpha = self.noise_ema_alpha
            self._noise_psd = alpha * power + (1.0 - alpha) * self._noise_psd
        self._noise_updates += 1

    def reset(self) -> None:
        """Forget the noise profile and the lagged frame."""
        self._noise_psd = None
        self._pending_psd = None
        self._snr_db = NOISE_FLOOR_DB
        self._noise_reduction_percent = 0.0
        self._noise_updates = 0

    def statistics(self) -> Dict[str, object]:
        return {
            "snr_db": round(self._snr_db, 2),
            "noise_reduction_percent": round(self._noise_reduction_percent, 2),
            "strength": self.strength,
            "initialized": self.initialized,
            "noise_updates": self._noise_updates,
        }
