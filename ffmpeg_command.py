"""Pixel-format/encoder selection and ffmpeg argument vector assembly."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Union

from filter_params import format_number
from restore_settings import AudioMode, Codec, Encoder, HwAccel, Settings

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".webp")
VIDEO_EXTENSIONS = (".mp4", ".mkv", ".mov")
OUTPUT_SUFFIX = "_[restored]"

PIX_FMT_8BIT = "yuv420p"
PIX_FMT_10BIT = "yuv420p10le"
PIX_FMT_NVENC_10BIT = "p010le"

HEVC_TAG = "hvc1"

_ENCODERS = {
    Codec.H264: {
        Encoder.NVENC: "h264_nvenc",
        Encoder.QSV: "h264_qsv",
        Encoder.VAAPI: "h264_vaapi",
    },
    Codec.HEVC: {
        Encoder.NVENC: "hevc_nvenc",
        Encoder.QSV: "hevc_qsv",
        Encoder.VAAPI: "hevc_vaapi",
    },
}
_SOFTWARE_ENCODERS = {Codec.H264: "libx264", Codec.HEVC: "libx265"}


class PreviewSink(Protocol):
    """Destination for the live-preview branch of a split filter graph."""

    def output_args(self) -> list[str]:
        ...


class SdlPreviewSink:
    """Show the preview branch in an SDL window."""

    def __init__(self, title: str = "Live Preview") -> None:
        self.title = title

    def output_args(self) -> list[str]:
        return ["-c:v", "rawvideo", "-f", "sdl", self.title]


def is_image(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def is_video(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in VIDEO_EXTENSIONS


def resolve_output_path(input_path: Union[str, Path], outdir: Optional[Path] = None) -> Path:
    """Return ``<outdir or input dir>/<stem>_[restored].<png|mp4>``."""
    source = Path(input_path)
    directory = Path(outdir) if outdir else source.parent
    extension = ".png" if is_image(source) else ".mp4"
    return directory / f"{source.stem}{OUTPUT_SUFFIX}{extension}"


def resolve_pixel_format(settings: Settings) -> str:
    if settings.pci_safe_mode:
        return PIX_FMT_8BIT
    if not settings.use10:
        return PIX_FMT_8BIT
    if settings.encoder is Encoder.NVENC:
        return PIX_FMT_NVENC_10BIT
    return PIX_FMT_10BIT


def resolve_video_encoder(settings: Settings) -> str:
    return _ENCODERS[settings.codec].get(settings.encoder, _SOFTWARE_ENCODERS[settings.codec])


def needs_hevc_tag(encoder_name: str) -> bool:
    return "hevc" in encoder_name or "265" in encoder_name


def fix_x265_params(params: str) -> str:
    """Re-delimit comma-separated x265 params with ``:``.

    A comma is only a separator when the token after it is a ``key=value``
    pair; commas inside a value such as ``deblock=-2,-2`` are kept.
    """
    chars = list(params)
    length = len(chars)
    for index, char in enumerate(chars):
        if char != ",":
            continue
        cursor = index + 1
        while cursor < length and chars[cursor] in " \t":
            cursor += 1
        while cursor < length and chars[cursor] not in ",:":
            if chars[cursor] == "=":
                chars[index] = ":"
                break
            cursor += 1
    return "".join(chars)


def build_ffmpeg_command(
    ffmpeg: str,
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    chain: str,
    settings: Settings,
    *,
    image: bool,
    preview_sink: Optional[PreviewSink] = None,
) -> list[str]:
    """Assemble the full ffmpeg invocation for one job."""
    cmd = [ffmpeg, "-hide_banner", "-loglevel", "error", "-stats", "-y"]
    if settings.hwaccel is not HwAccel.NONE:
        cmd.extend(["-hwaccel", settings.hwaccel.value])
    cmd.extend(["-i", str(input_path)])

    if settings.preview:
        cmd.extend(
            [
                "-filter_complex",
                f"[0:v]{chain},split=2[main][prev]",
                "-map",
                "[main]",
                "-map",
                "0:a?",
            ]
        )
    else:
        cmd.extend(["-vf", chain, "-map", "0:v:0", "-map", "0:a?"])

    if image:
        cmd.extend(["-frames:v", "1"])
    else:
        encoder = resolve_video_encoder(settings)
        cmd.extend(["-c:v", encoder])
        if needs_hevc_tag(encoder):
            cmd.extend(["-tag:v", HEVC_TAG])
        cmd.extend(["-pix_fmt", resolve_pixel_format(settings)])
        if settings.threads is not None:
            cmd.extend(["-threads", str(settings.threads)])
        if "vaapi" not in encoder:
            cmd.extend(["-preset", settings.preset, "-crf", format_number(settings.crf)])
        if encoder == "libx265" and settings.x265_params:
            cmd.extend(["-x265-params", fix_x265_params(settings.x265_params)])
        if settings.audio_mode is AudioMode.COPY:
            cmd.extend(["-c:a", "copy"])
        else:
            cmd.extend(["-c:a", "aac", "-b:a", settings.audio_bitrate])
        if settings.movflags:
            cmd.extend(["-movflags", settings.movflags])

    cmd.append(str(output_path))

    if settings.preview:
        sink = preview_sink if preview_sink is not None else SdlPreviewSink()
        cmd.extend(["-map", "[prev]"])
        cmd.extend(sink.output_args())

    return cmd
