"""Configuration record for the restoration pipeline.

The record is immutable for the duration of a job. External input (CLI flags,
preset files) enters through :func:`settings_from_mapping`, which validates the
flat ``key -> value`` form once; the compiler never re-parses it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from filter_params import AUTO, format_number, parse_strength
from toolchain import progress_write

FPS_LOCK_VALUES = ("source", "lock")
MAX_FPS = 240.0

Strength = Union[float, str]


class Codec(str, Enum):
    H264 = "h264"
    HEVC = "hevc"


class Encoder(str, Enum):
    AUTO = "auto"
    CPU = "cpu"
    NVENC = "nvenc"
    QSV = "qsv"
    VAAPI = "vaapi"


class HwAccel(str, Enum):
    NONE = "none"
    CUDA = "cuda"
    QSV = "qsv"
    VAAPI = "vaapi"
    VIDEOTOOLBOX = "videotoolbox"


class Scaler(str, Enum):
    LANCZOS = "lanczos"
    ZSCALE = "zscale"
    AI = "ai"
    HW = "hw"


class AiBackend(str, Enum):
    SR = "sr"
    DNN = "dnn"


class AiModelType(str, Enum):
    SRCNN = "srcnn"
    ESPCN = "espcn"
    EDSR = "edsr"
    FSRCNN = "fsrcnn"


class DnnBackend(str, Enum):
    TENSORFLOW = "tensorflow"
    OPENVINO = "openvino"
    NATIVE = "native"


class MiMode(str, Enum):
    MCI = "mci"
    BLEND = "blend"


class Denoiser(str, Enum):
    BM3D = "bm3d"
    NLMEANS = "nlmeans"
    HQDN3D = "hqdn3d"
    ATADENOISE = "atadenoise"


class DeblockMode(str, Enum):
    WEAK = "weak"
    STRONG = "strong"


class SharpenMethod(str, Enum):
    CAS = "cas"
    UNSHARP = "unsharp"


class DebandMethod(str, Enum):
    DEBAND = "deband"
    GRADFUN = "gradfun"
    F3KDB = "f3kdb"


class AudioMode(str, Enum):
    AAC = "aac"
    COPY = "copy"


class Category(str, Enum):
    """Restoration stage categories that can be toggled or killed."""

    DEBLOCK = "deblock"
    DERING = "dering"
    DENOISE = "denoise"
    DECIMATE = "decimate"
    INTERPOLATE = "interpolate"
    SHARPEN = "sharpen"
    DEBAND = "deband"
    EQ = "eq"
    GRAIN = "grain"


# Categories that exist in both passes, in their original flat-key order.
PASS_CATEGORIES = (
    Category.DENOISE,
    Category.DEBLOCK,
    Category.DERING,
    Category.SHARPEN,
    Category.DEBAND,
    Category.GRAIN,
)


@dataclass(frozen=True)
class RestorationPass:
    """One restoration pass; the record is used twice (primary, secondary)."""

    denoiser: Denoiser = Denoiser.BM3D
    denoise_strength: Strength = 2.5
    deblock_mode: DeblockMode = DeblockMode.STRONG
    deblock_thresh: str = ""
    dering_active: bool = False
    dering_strength: float = 0.5

    sharpen_method: SharpenMethod = SharpenMethod.CAS
    sharpen_strength: float = 0.25
    usm_radius: int = 5
    usm_amount: float = 1.0
    usm_threshold: float = 0.03

    deband_method: DebandMethod = DebandMethod.DEBAND
    deband_strength: float = 0.015
    f3kdb_range: int = 15
    f3kdb_y: float = 64.0
    f3kdb_cbcr: float = 64.0

    grain_strength: float = 1.0

    use_denoise: bool = True
    use_deblock: bool = True
    use_dering: bool = True
    use_sharpen: bool = True
    use_deband: bool = True
    use_grain: bool = True

    def uses(self, category: Category) -> bool:
        """Return this pass's own enable flag for ``category``."""
        if category not in PASS_CATEGORIES:
            return False
        return bool(getattr(self, f"use_{category.value}"))


@dataclass(frozen=True)
class KillSwitches:
    """Disable a category in both passes at once."""

    deblock: bool = False
    denoise: bool = False
    decimate: bool = False
    interpolate: bool = False
    sharpen: bool = False
    deband: bool = False
    eq: bool = False
    grain: bool = False

    def blocks(self, category: Category) -> bool:
        # Deringing has no kill-switch of its own.
        if category is Category.DERING:
            return False
        return bool(getattr(self, category.value))


PRIMARY_PASS = RestorationPass()
SECONDARY_PASS = RestorationPass(
    use_denoise=False,
    use_deblock=False,
    use_dering=False,
    use_sharpen=False,
    use_deband=False,
    use_grain=False,
)


@dataclass(frozen=True)
class Settings:
    """Immutable configuration record consumed by the compiler."""

    # Identity / output
    codec: Codec = Codec.H264
    crf: float = 16
    preset: str = "slow"
    fps: Union[float, str] = 60.0
    scale_factor: float = 2.0
    outdir: Optional[Path] = None
    movflags: str = "+faststart"
    audio_bitrate: str = "192k"
    audio_mode: AudioMode = AudioMode.AAC
    threads: Optional[int] = None
    use10: bool = False
    hwaccel: HwAccel = HwAccel.NONE
    encoder: Encoder = Encoder.AUTO

    # Upscaler
    scaler: Scaler = Scaler.LANCZOS
    ai_backend: AiBackend = AiBackend.SR
    ai_model: str = ""
    ai_model_type: AiModelType = AiModelType.ESPCN
    dnn_backend: DnnBackend = DnnBackend.TENSORFLOW
    mi_mode: MiMode = MiMode.MCI

    # Restoration
    passes: tuple[RestorationPass, RestorationPass] = (PRIMARY_PASS, SECONDARY_PASS)
    kill: KillSwitches = field(default_factory=KillSwitches)
    pci_safe_mode: bool = False

    # Color / LUT
    eq_contrast: float = 1.03
    eq_brightness: float = 0.005
    eq_saturation: float = 1.06
    lut3d_file: str = ""

    # Encoder specific
    x265_params: str = "aq-mode=3,psy-rd=2.0,deblock=-2,-2"

    preview: bool = False

    @property
    def primary(self) -> RestorationPass:
        return self.passes[0]

    @property
    def secondary(self) -> RestorationPass:
        return self.passes[1]

    @property
    def locks_fps(self) -> bool:
        return isinstance(self.fps, str) and self.fps in FPS_LOCK_VALUES


DEFAULT_SETTINGS = Settings()


def stage_active(settings: Settings, restoration_pass: RestorationPass, category: Category) -> bool:
    """Return True when ``category`` runs in ``restoration_pass``.

    The kill-switch governs both passes; deringing additionally requires the
    pass's ``dering_active`` flag.
    """
    if not restoration_pass.uses(category):
        return False
    if settings.kill.blocks(category):
        return False
    if category is Category.DERING:
        return restoration_pass.dering_active
    return True


# ── Boundary validation ───────────────────────────────────────────────────────

Rule = Callable[[object, object], object]


def _warn(key: str, raw: object, default: object) -> None:
    progress_write(f"Warning: invalid value {raw!r} for '{key}', using default {default!r}.")


# Stored for unparseable strengths so each algorithm substitutes its own default.
ALGORITHM_DEFAULT = 0.0


def _parse_float(raw: object) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            return None
    if not math.isfinite(value):
        return None
    return value


def _number(lower: float, upper: float, *, integer: bool = False) -> Rule:
    def rule(raw: object, default: object) -> object:
        value = _parse_float(raw)
        if value is None or value < lower or value > upper:
            return None
        return int(value) if integer else value

    return rule


def _finite(*, integer: bool = False) -> Rule:
    """Accept any finite number; the derived-parameter functions clamp it."""

    def rule(raw: object, default: object) -> object:
        value = _parse_float(raw)
        if value is None:
            return None
        return int(round(value)) if integer else value

    return rule


def _strength(*, allow_auto: bool = False) -> Rule:
    """Strengths are stored non-negative; 0 lets each algorithm pick its default."""

    def rule(raw: object, default: object) -> object:
        if allow_auto and isinstance(raw, str) and raw.strip().lower() == AUTO:
            return AUTO
        if _parse_float(raw) is None:
            return None
        return parse_strength(raw)

    return rule


def _fps(raw: object, default: object) -> object:
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in FPS_LOCK_VALUES:
            return text
        if "/" in text:
            numerator, _, denominator = text.partition("/")
            num = _parse_float(numerator)
            den = _parse_float(denominator)
            if num is None or den is None or num <= 0 or den <= 0 or num / den > MAX_FPS:
                return None
            # Rational rates go to minterpolate unchanged.
            return f"{format_number(num)}/{format_number(den)}"
    value = _parse_float(raw)
    if value is None or value <= 0 or value > MAX_FPS:
        return None
    return value


def _optional_int(lower: int, upper: int) -> Rule:
    def rule(raw: object, default: object) -> object:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return ""
        value = _parse_float(raw)
        if value is None or value < lower or value > upper or not value.is_integer():
            return None
        return int(value)

    return rule


def _bool(raw: object, default: object) -> object:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return raw != 0
    text = str(raw).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    return None


def _enum(enum_cls: type[Enum]) -> Rule:
    def rule(raw: object, default: object) -> object:
        if isinstance(raw, enum_cls):
            return raw
        try:
            return enum_cls(str(raw).strip().lower())
        except ValueError:
            return None

    return rule


def _text(raw: object, default: object) -> object:
    return "" if raw is None else str(raw).strip()


def _encoder(raw: object, default: object) -> object:
    # Older presets store the concrete encoder name instead of the vendor.
    if isinstance(raw, str) and raw.strip().lower() == "hevc_nvenc":
        return Encoder.NVENC
    return _enum(Encoder)(raw, default)


_TOP_RULES: dict[str, Rule] = {
    "codec": _enum(Codec),
    "crf": _number(0, 51),
    "preset": _text,
    "fps": _fps,
    "scale_factor": _number(0.1, 10.0),
    "outdir": _text,
    "movflags": _text,
    "audio_bitrate": _text,
    "audio_mode": _enum(AudioMode),
    "threads": _optional_int(0, 256),
    "use10": _bool,
    "hwaccel": _enum(HwAccel),
    "encoder": _encoder,
    "scaler": _enum(Scaler),
    "ai_backend": _enum(AiBackend),
    "ai_model": _text,
    "ai_model_type": _enum(AiModelType),
    "dnn_backend": _enum(DnnBackend),
    "mi_mode": _enum(MiMode),
    "pci_safe_mode": _bool,
    "eq_contrast": _number(0.0, 10.0),
    "eq_brightness": _number(-1.0, 1.0),
    "eq_saturation": _number(0.0, 3.0),
    "lut3d_file": _text,
    "x265_params": _text,
    "preview": _bool,
}

_PASS_RULES: dict[str, Rule] = {
    "denoiser": _enum(Denoiser),
    "denoise_strength": _strength(allow_auto=True),
    "deblock_mode": _enum(DeblockMode),
    "deblock_thresh": _text,
    "dering_active": _bool,
    "dering_strength": _strength(),
    "sharpen_method": _enum(SharpenMethod),
    "sharpen_strength": _strength(),
    "usm_radius": _finite(integer=True),
    "usm_amount": _finite(),
    "usm_threshold": _number(0.0, 255.0),
    "deband_method": _enum(DebandMethod),
    "deband_strength": _strength(),
    "f3kdb_range": _finite(integer=True),
    "f3kdb_y": _finite(),
    "f3kdb_cbcr": _finite(),
    "grain_strength": _finite(),
}

PASS_FIELDS = tuple(_PASS_RULES)
STRENGTH_FIELDS = ("denoise_strength", "dering_strength", "sharpen_strength", "deband_strength")
KILL_FIELDS = tuple(f.name for f in fields(KillSwitches))
SECOND_PASS_SUFFIX = "_2"


def _plain(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if value is None:
        return ""
    return value


def settings_to_mapping(settings: Settings) -> dict[str, object]:
    """Flatten ``settings`` into the JSON-serialisable flat key form."""
    data: dict[str, object] = {}
    for name in _TOP_RULES:
        data[name] = _plain(getattr(settings, name))
    for suffix, restoration_pass in (("", settings.primary), (SECOND_PASS_SUFFIX, settings.secondary)):
        for name in PASS_FIELDS:
            data[name + suffix] = _plain(getattr(restoration_pass, name))
    for category in PASS_CATEGORIES:
        data[f"use_{category.value}{SECOND_PASS_SUFFIX}"] = settings.secondary.uses(category)
    for name in KILL_FIELDS:
        data[f"no_{name}"] = getattr(settings.kill, name)
    return data


def _coerce(key: str, rule: Rule, raw: object, default: object) -> object:
    value = rule(raw, default)
    if value is None:
        _warn(key, raw, _plain(default))
        return default
    return value


def settings_from_mapping(
    values: Mapping[str, object],
    base: Optional[Settings] = None,
) -> Settings:
    """Validate flat ``values`` and apply them on top of ``base``.

    Unknown keys are ignored. A value that does not validate falls back to the
    factory default for that field, except strengths: those keep any number
    (negatives become 0) and an unparseable strength becomes
    :data:`ALGORITHM_DEFAULT`, leaving clamping to :mod:`filter_params`.
    """
    base = base if base is not None else DEFAULT_SETTINGS
    top: dict[str, object] = {}
    pass_updates: tuple[dict[str, object], dict[str, object]] = ({}, {})
    kill_updates: dict[str, object] = {}

    for key, raw in values.items():
        if key in _TOP_RULES:
            top[key] = _coerce(key, _TOP_RULES[key], raw, getattr(DEFAULT_SETTINGS, key))
            continue

        if key.startswith("no_") and key[3:] in KILL_FIELDS:
            kill_updates[key[3:]] = _coerce(key, _bool, raw, False)
            continue

        if key.startswith("use_") and key.endswith(SECOND_PASS_SUFFIX):
            category_name = key[len("use_"):-len(SECOND_PASS_SUFFIX)]
            if category_name in {c.value for c in PASS_CATEGORIES}:
                pass_updates[1][f"use_{category_name}"] = _coerce(key, _bool, raw, False)
            continue

        index = 0
        name = key
        if key.endswith(SECOND_PASS_SUFFIX):
            index = 1
            name = key[: -len(SECOND_PASS_SUFFIX)]
        if name in _PASS_RULES:
            if name in STRENGTH_FIELDS:
                default = ALGORITHM_DEFAULT
            else:
                default = getattr(DEFAULT_SETTINGS.passes[index], name)
            pass_updates[index][name] = _coerce(key, _PASS_RULES[name], raw, default)

    if "outdir" in top:
        top["outdir"] = Path(str(top["outdir"])).expanduser() if top["outdir"] else None
    if top.get("threads") == "":
        top["threads"] = None

    passes = (
        replace(base.primary, **pass_updates[0]),
        replace(base.secondary, **pass_updates[1]),
    )
    return replace(
        base,
        passes=passes,
        kill=replace(base.kill, **kill_updates),
        **top,
    )
