"""CLI: argument parsing, explicit-override detection, and settings layering."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from restore_errors import InvalidOptions
from restore_settings import (
    AiBackend,
    AiModelType,
    Codec,
    DebandMethod,
    DeblockMode,
    Denoiser,
    DnnBackend,
    Encoder,
    HwAccel,
    MiMode,
    Scaler,
    Settings,
    SharpenMethod,
    settings_from_mapping,
)

# ── Constants ──────────────────────────────────────────────────────────────────

SUPPORTED_PRESETS = (
    "ultrafast",
    "superfast",
    "veryfast",
    "faster",
    "fast",
    "medium",
    "slow",
    "slower",
    "veryslow",
    "placebo",
)

KILL_SWITCH_FLAGS = (
    "deblock",
    "denoise",
    "decimate",
    "interpolate",
    "sharpen",
    "deband",
    "eq",
    "grain",
)

# Options that set a second setting as a side effect of being typed.
IMPLIED_SETTINGS: dict[str, dict[str, object]] = {
    "usm_radius": {"sharpen_method": SharpenMethod.UNSHARP.value},
    "f3kdb_range": {"deband_method": DebandMethod.F3KDB.value},
}


def _choices(enum_cls) -> tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


# ── Functions ──────────────────────────────────────────────────────────────────


def parse_cli_overrides(argv: Sequence[str]) -> set[str]:
    """Return canonical setting names explicitly provided by the caller."""
    option_to_key = {
        "-o": "outdir",
        "--outdir": "outdir",
        "-c": "crf",
        "--crf": "crf",
        "-p": "preset",
        "--preset": "preset",
        "-f": "fps",
        "--fps": "fps",
        "-s": "scale_factor",
        "--scale": "scale_factor",
        "--codec": "codec",
        "--hevc": "codec",
        "--10bit": "use10",
        "--x265-params": "x265_params",
        "--scaler": "scaler",
        "--ai-backend": "ai_backend",
        "--ai-model": "ai_model",
        "--ai-model-type": "ai_model_type",
        "--dnn-backend": "dnn_backend",
        "--mi-mode": "mi_mode",
        "--denoiser": "denoiser",
        "--denoise-strength": "denoise_strength",
        "--dering": "dering_active",
        "--dering-strength": "dering_strength",
        "--deblock-mode": "deblock_mode",
        "--sharpen-method": "sharpen_method",
        "--sharpen-strength": "sharpen_strength",
        "--usm-radius": "usm_radius",
        "--usm-amount": "usm_amount",
        "--usm-threshold": "usm_threshold",
        "--deband-method": "deband_method",
        "--deband-strength": "deband_strength",
        "--f3kdb-range": "f3kdb_range",
        "--grain": "grain_strength",
        "--lut": "lut3d_file",
        "--eq-contrast": "eq_contrast",
        "--eq-brightness": "eq_brightness",
        "--eq-saturation": "eq_saturation",
        "--pci-safe": "pci_safe_mode",
        "--preview": "preview",
        "--hwaccel": "hwaccel",
        "--encoder": "encoder",
        "--threads": "threads",
        "--audio-bitrate": "audio_bitrate",
        "--audio-copy": "audio_mode",
        "--movflags": "movflags",
    }
    option_to_key.update({f"--no-{name}": f"no_{name}" for name in KILL_SWITCH_FLAGS})

    overrides: set[str] = set()
    for token in argv:
        if token == "--":
            break
        if not token.startswith("-"):
            continue
        option = token.split("=", maxsplit=1)[0]
        key = option_to_key.get(option)
        if key is None and len(option) > 2 and not option.startswith("--"):
            # Attached short-option values such as -c18.
            key = option_to_key.get(option[:2])
        if key:
            overrides.add(key)
    return overrides


def parse_set_overrides(pairs: Optional[Sequence[str]]) -> dict[str, str]:
    """Parse repeated ``--set KEY=VALUE`` arguments."""
    values: dict[str, str] = {}
    for pair in pairs or ():
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise InvalidOptions(f"Expected KEY=VALUE for --set, got: {pair!r}")
        values[key] = value
    return values


def apply_cli_overrides(
    base: Settings,
    args: argparse.Namespace,
    cli_overrides: set[str],
) -> Settings:
    """Layer explicitly typed options on top of ``base`` (defaults or a preset)."""
    values: dict[str, object] = {}
    for key in sorted(cli_overrides):
        value = getattr(args, key, None)
        if value is None:
            continue
        values[key] = value
        for implied_key, implied_value in IMPLIED_SETTINGS.get(key, {}).items():
            values.setdefault(implied_key, implied_value)
    values.update(parse_set_overrides(getattr(args, "set_values", None)))
    if not values:
        return base
    return settings_from_mapping(values, base=base)


def validate_runtime_args(args: argparse.Namespace) -> None:
    if args.list_presets:
        return
    if not args.input and not args.save_preset:
        raise InvalidOptions("An input file or directory is required.")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Restore and upscale video or images through an ffmpeg filter pipeline",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("input", type=str, nargs="?", default=None, help="Input file or directory")
    parser.add_argument(
        "-o",
        "--outdir",
        type=str,
        default=None,
        help="Output directory (default: next to each input)",
    )

    encode = parser.add_argument_group("encoding")
    encode.add_argument("-c", "--crf", type=float, default=16, help="Constant rate factor (0-51)")
    encode.add_argument("-p", "--preset", type=str, default="slow", choices=SUPPORTED_PRESETS, help="Encoder preset")
    encode.add_argument(
        "-f",
        "--fps",
        type=str,
        default="60",
        help="Target frame rate (60, 59.94 or 60000/1001), or 'source' to keep the input rate",
    )
    encode.add_argument("-s", "--scale", dest="scale_factor", type=float, default=2.0, help="Upscale factor")
    encode.add_argument("--codec", type=str, choices=_choices(Codec), default="h264", help="Output codec")
    encode.add_argument(
        "--hevc",
        dest="codec",
        action="store_const",
        const=Codec.HEVC.value,
        help="Shorthand for --codec hevc",
    )
    encode.add_argument("--10bit", dest="use10", action="store_true", help="Encode 10-bit output")
    encode.add_argument(
        "--x265-params",
        type=str,
        default="aq-mode=3,psy-rd=2.0,deblock=-2,-2",
        help="Extra libx265 parameters",
    )
    encode.add_argument("--encoder", type=str, choices=_choices(Encoder), default="auto", help="Encoder vendor")
    encode.add_argument("--hwaccel", type=str, choices=_choices(HwAccel), default="none", help="Decode acceleration")
    encode.add_argument("--threads", type=int, default=None, help="Encoder thread count")
    encode.add_argument("--audio-bitrate", type=str, default="192k", help="Audio bitrate for AAC encode")
    encode.add_argument(
        "--audio-copy",
        dest="audio_mode",
        action="store_const",
        const="copy",
        default="aac",
        help="Copy the audio stream instead of re-encoding",
    )
    encode.add_argument("--movflags", type=str, default="+faststart", help="MP4 movflags (empty to omit)")
    encode.add_argument("--pci-safe", dest="pci_safe_mode", action="store_true", help="Force 8-bit yuv420p")

    upscale = parser.add_argument_group("upscaling")
    upscale.add_argument("--scaler", type=str, choices=_choices(Scaler), default="lanczos", help="Upscaler")
    upscale.add_argument("--ai-backend", type=str, choices=_choices(AiBackend), default="sr", help="AI filter")
    upscale.add_argument("--ai-model", type=str, default="", help="Path to the AI model file")
    upscale.add_argument(
        "--ai-model-type",
        type=str,
        choices=_choices(AiModelType),
        default="espcn",
        help="AI model architecture",
    )
    upscale.add_argument(
        "--dnn-backend",
        type=str,
        choices=_choices(DnnBackend),
        default="tensorflow",
        help="DNN inference backend",
    )
    upscale.add_argument("--mi-mode", type=str, choices=_choices(MiMode), default="mci", help="Interpolation mode")

    restore = parser.add_argument_group("restoration")
    restore.add_argument("--denoiser", type=str, choices=_choices(Denoiser), default="bm3d", help="Denoiser")
    restore.add_argument(
        "--denoise-strength",
        type=str,
        default="2.5",
        help="Denoise strength, or 'auto' for bm3d",
    )
    restore.add_argument("--dering", dest="dering_active", action="store_true", help="Enable deringing")
    restore.add_argument("--dering-strength", type=float, default=0.5, help="Deringing strength")
    restore.add_argument(
        "--deblock-mode",
        type=str,
        choices=_choices(DeblockMode),
        default="strong",
        help="Deblock filter mode",
    )
    restore.add_argument(
        "--sharpen-method",
        type=str,
        choices=_choices(SharpenMethod),
        default="cas",
        help="Sharpening filter",
    )
    restore.add_argument("--sharpen-strength", type=float, default=0.25, help="CAS strength (0-1)")
    restore.add_argument("--usm-radius", type=int, default=5, help="Unsharp matrix size (selects unsharp)")
    restore.add_argument("--usm-amount", type=float, default=1.0, help="Unsharp amount")
    restore.add_argument("--usm-threshold", type=float, default=0.03, help="Unsharp threshold")
    restore.add_argument(
        "--deband-method",
        type=str,
        choices=_choices(DebandMethod),
        default="deband",
        help="Debanding filter",
    )
    restore.add_argument("--deband-strength", type=float, default=0.015, help="Deband strength")
    restore.add_argument("--f3kdb-range", type=int, default=15, help="f3kdb range (selects f3kdb)")
    restore.add_argument("--grain", dest="grain_strength", type=float, default=1.0, help="Film grain strength")
    restore.add_argument("--lut", dest="lut3d_file", type=str, default="", help="3D LUT file")
    restore.add_argument("--eq-contrast", type=float, default=1.03, help="Contrast")
    restore.add_argument("--eq-brightness", type=float, default=0.005, help="Brightness")
    restore.add_argument("--eq-saturation", type=float, default=1.06, help="Saturation")
    for name in KILL_SWITCH_FLAGS:
        restore.add_argument(
            f"--no-{name}",
            dest=f"no_{name}",
            action="store_true",
            help=f"Disable {name} in both passes",
        )
    restore.add_argument(
        "--set",
        dest="set_values",
        action="append",
        metavar="KEY=VALUE",
        default=None,
        help="Set any settings key, e.g. use_denoise_2=1 or denoise_strength_2=4",
    )

    parser.add_argument("--preview", action="store_true", help="Show a live preview window")
    parser.add_argument("--dry-run", action="store_true", help="Print commands without executing")
    parser.add_argument("--ffmpeg-path", type=str, default=None, help="Custom path to ffmpeg binary")

    presets = parser.add_argument_group("presets")
    presets.add_argument("--use-preset", type=str, default=None, metavar="NAME", help="Load a saved preset")
    presets.add_argument(
        "--save-preset",
        type=str,
        default=None,
        metavar="NAME",
        help="Save the effective settings as a preset and make it active",
    )
    presets.add_argument("--list-presets", action="store_true", help="List saved presets and exit")

    return parser.parse_args(argv)
