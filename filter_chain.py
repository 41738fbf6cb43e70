"""Compile a Settings record into an ffmpeg filter-chain string."""

from __future__ import annotations

from typing import Optional

import filter_params
from ffmpeg_command import resolve_pixel_format
from filter_params import format_number
from restore_settings import (
    AiBackend,
    AiModelType,
    Category,
    DebandMethod,
    Denoiser,
    HwAccel,
    RestorationPass,
    Scaler,
    Settings,
    SharpenMethod,
    stage_active,
)

SEPARATOR = ","

WORKING_PIX_FMT = "yuv444p16le"
SAFE_PIX_FMT = "yuv420p"
DECIMATE_FILTER = "mpdecimate=hi=64*12,setpts=PTS"
LIMITER_10BIT = "limiter=min=64:max=940:planes=15"
LIMITER_8BIT = "limiter=min=16:max=235:planes=15"


def quote_filter_value(value: str) -> str:
    """Single-quote a filter option value, escaping embedded quotes."""
    return "'" + value.replace("'", "'\\''") + "'"


def even_dimension(axis: str, factor: float) -> str:
    return f"trunc({axis}*{format_number(factor)}/2)*2"


# ── Stage builders ────────────────────────────────────────────────────────────

def _hqdn3d(params: filter_params.Hqdn3dParams) -> str:
    return "hqdn3d=%.2f:%.2f:%.2f:%.2f" % tuple(params)


def build_deblock(restoration_pass: RestorationPass) -> str:
    expression = f"deblock=filter={restoration_pass.deblock_mode.value}:block=8"
    if restoration_pass.deblock_thresh:
        expression += f":{restoration_pass.deblock_thresh}"
    return expression


def build_dering(restoration_pass: RestorationPass) -> str:
    return _hqdn3d(filter_params.dering_params(restoration_pass.dering_strength))


def build_denoise(restoration_pass: RestorationPass) -> str:
    denoiser = restoration_pass.denoiser
    strength = restoration_pass.denoise_strength

    if denoiser is Denoiser.HQDN3D:
        return _hqdn3d(filter_params.hqdn3d_params(strength))
    if denoiser is Denoiser.NLMEANS:
        params = filter_params.nlmeans_params(strength)
        return "nlmeans=s=%.2f:p=%d:r=%d" % (params.strength, params.patch, params.research)
    if denoiser is Denoiser.ATADENOISE:
        params = filter_params.atadenoise_params(strength)
        return "atadenoise=s=%.2f:0a=%.3f:0b=%.3f" % (params.strength, params.a, params.b)

    params = filter_params.bm3d_params(strength)
    if params.sigma is None:
        return f"bm3d=estim={params.estim}:planes=1"
    return "bm3d=sigma=%.2f:estim=%s:planes=1" % (params.sigma, params.estim)


def build_interpolate(settings: Settings) -> str:
    options = f"mi_mode={settings.mi_mode.value}:mc_mode=aobmc:me_mode=bidir:vsbmc=1"
    if settings.locks_fps:
        return f"minterpolate={options}"
    fps = settings.fps if isinstance(settings.fps, str) else format_number(settings.fps)
    return f"minterpolate=fps={fps}:{options}"


def build_scale(settings: Settings) -> str:
    factor = settings.scale_factor
    width = even_dimension("iw", factor)
    height = even_dimension("ih", factor)

    if settings.scaler is Scaler.ZSCALE:
        return f"zscale=w={width}:h={height}:filter=lanczos:dither=error_diffusion"

    if settings.scaler is Scaler.AI:
        model = quote_filter_value(settings.ai_model)
        backend = settings.dnn_backend.value
        if settings.ai_backend is AiBackend.DNN:
            return f"dnn_processing=dnn_backend={backend}:model={model}:input=x:output=y"
        expression = f"sr=dnn_backend={backend}:model={model}"
        if settings.ai_model_type is AiModelType.SRCNN:
            expression += f":scale_factor={format_number(factor)}"
        return expression

    if settings.scaler is Scaler.HW:
        if settings.hwaccel is HwAccel.CUDA:
            return f"scale_npp={width}:{height}"
        return f"scale={width}:{height}:flags=lanczos"

    return f"scale={width}:{height}:flags=lanczos+accurate_rnd"


def build_sharpen(restoration_pass: RestorationPass) -> str:
    if restoration_pass.sharpen_method is SharpenMethod.UNSHARP:
        params = filter_params.unsharp_params(restoration_pass.usm_radius, restoration_pass.usm_amount)
        return f"unsharp={params.radius}:{params.radius}:{format_number(params.amount)}"
    strength = filter_params.cas_strength(restoration_pass.sharpen_strength)
    return f"cas=strength={format_number(strength)}"


def build_deband(restoration_pass: RestorationPass) -> str:
    method = restoration_pass.deband_method
    if method is DebandMethod.GRADFUN:
        return f"gradfun={format_number(filter_params.gradfun_strength(restoration_pass.deband_strength))}"
    if method is DebandMethod.F3KDB:
        params = filter_params.f3kdb_params(
            restoration_pass.f3kdb_range,
            restoration_pass.f3kdb_y,
            restoration_pass.f3kdb_cbcr,
        )
        return "deband=1thr=%.5f:2thr=%.5f:3thr=%.5f:range=%d:blur=0" % (
            params.thr_y,
            params.thr_c,
            params.thr_c,
            params.range,
        )
    threshold = filter_params.deband_threshold(restoration_pass.deband_strength)
    return f"deband=1thr={format_number(threshold)}:b=1"


def build_color(settings: Settings) -> list[str]:
    stages = [
        "eq=contrast=%s:brightness=%s:saturation=%s"
        % (
            format_number(settings.eq_contrast),
            format_number(settings.eq_brightness),
            format_number(settings.eq_saturation),
        )
    ]
    if settings.lut3d_file:
        stages.append(f"lut3d=file={quote_filter_value(settings.lut3d_file)}")
    return stages


def build_grain(settings: Settings) -> Optional[str]:
    """Grain runs once; a secondary-pass strength replaces the primary one."""
    if stage_active(settings, settings.secondary, Category.GRAIN):
        source = settings.secondary
    elif stage_active(settings, settings.primary, Category.GRAIN):
        source = settings.primary
    else:
        return None
    return f"noise=alls={filter_params.grain_strength(source.grain_strength)}:allf=t"


def build_output_normalization(settings: Settings, pix_fmt: str) -> list[str]:
    limiter = LIMITER_10BIT if settings.use10 and not settings.pci_safe_mode else LIMITER_8BIT
    return [f"format={pix_fmt}", limiter, "setsar=1"]


_PASS_BUILDERS = (
    (Category.DEBLOCK, build_deblock),
    (Category.DERING, build_dering),
    (Category.DENOISE, build_denoise),
)
_POST_SCALE_BUILDERS = (
    (Category.SHARPEN, build_sharpen),
    (Category.DEBAND, build_deband),
)


def _pass_stages(settings: Settings, restoration_pass: RestorationPass, builders) -> list[str]:
    return [
        build(restoration_pass)
        for category, build in builders
        if stage_active(settings, restoration_pass, category)
    ]


def build_stages(settings: Settings, *, image: bool, pix_fmt: Optional[str] = None) -> list[str]:
    """Return the ordered list of filter stages for one job."""
    if pix_fmt is None:
        pix_fmt = resolve_pixel_format(settings)

    primary = settings.primary
    secondary = settings.secondary
    kill = settings.kill
    stages: list[str] = []

    if not image:
        stages.append(f"format={SAFE_PIX_FMT if settings.pci_safe_mode else WORKING_PIX_FMT}")
        if not kill.decimate:
            stages.append(DECIMATE_FILTER)

    stages.extend(_pass_stages(settings, primary, _PASS_BUILDERS))

    if not image and not kill.interpolate:
        stages.append(build_interpolate(settings))

    stages.append(build_scale(settings))
    stages.extend(_pass_stages(settings, primary, _POST_SCALE_BUILDERS))

    if not kill.eq:
        stages.extend(build_color(settings))

    stages.extend(_pass_stages(settings, secondary, _PASS_BUILDERS + _POST_SCALE_BUILDERS))

    grain = build_grain(settings)
    if grain is not None:
        stages.append(grain)

    if not image:
        stages.extend(build_output_normalization(settings, pix_fmt))

    return stages


def compile_filter_chain(settings: Settings, *, image: bool, pix_fmt: Optional[str] = None) -> str:
    """Serialize the job's stages into a single ffmpeg filter chain."""
    chain = "".join(stage + SEPARATOR for stage in build_stages(settings, image=image, pix_fmt=pix_fmt))
    if chain.endswith(SEPARATOR):
        chain = chain[: -len(SEPARATOR)]
    return chain
