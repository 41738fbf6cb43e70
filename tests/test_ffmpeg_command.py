import unittest
from pathlib import Path
from unittest import mock

import ffmpeg_command
from restore_settings import DEFAULT_SETTINGS, settings_from_mapping


def _settings(**values):
    with mock.patch("restore_settings.progress_write"):
        return settings_from_mapping(values)


class TestX265Params(unittest.TestCase):
    def test_value_commas_are_preserved(self):
        self.assertEqual(
            ffmpeg_command.fix_x265_params("aq-mode=3,psy-rd=2.0,deblock=-2,-2"),
            "aq-mode=3:psy-rd=2.0:deblock=-2,-2",
        )

    def test_blank_after_comma_is_skipped(self):
        self.assertEqual(ffmpeg_command.fix_x265_params("a=1, b=2"), "a=1: b=2")
        self.assertEqual(ffmpeg_command.fix_x265_params("a=1,\tb=2"), "a=1:\tb=2")

    def test_edge_cases(self):
        cases = {
            "": "",
            "a=1": "a=1",
            "a=1,": "a=1,",
            "a=1,b": "a=1,b",
            "a=1,,b=2": "a=1,:b=2",
            "a=1:b=2,c=3": "a=1:b=2:c=3",
            "deblock=-2,-2:aq-mode=3": "deblock=-2,-2:aq-mode=3",
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(ffmpeg_command.fix_x265_params(raw), expected)

    def test_is_idempotent(self):
        once = ffmpeg_command.fix_x265_params("aq-mode=3,psy-rd=2.0,deblock=-2,-2")
        self.assertEqual(ffmpeg_command.fix_x265_params(once), once)


class TestSelection(unittest.TestCase):
    def test_pixel_format_table(self):
        cases = [
            ({}, "yuv420p"),
            ({"use10": 1}, "yuv420p10le"),
            ({"use10": 1, "encoder": "nvenc"}, "p010le"),
            ({"use10": 1, "encoder": "hevc_nvenc"}, "p010le"),
            ({"use10": 1, "encoder": "qsv"}, "yuv420p10le"),
            ({"use10": 1, "pci_safe_mode": 1}, "yuv420p"),
            ({"use10": 1, "encoder": "nvenc", "pci_safe_mode": 1}, "yuv420p"),
        ]
        for values, expected in cases:
            with self.subTest(values=values):
                self.assertEqual(ffmpeg_command.resolve_pixel_format(_settings(**values)), expected)

    def test_encoder_table(self):
        cases = {
            ("h264", "auto"): "libx264",
            ("h264", "cpu"): "libx264",
            ("h264", "nvenc"): "h264_nvenc",
            ("h264", "qsv"): "h264_qsv",
            ("h264", "vaapi"): "h264_vaapi",
            ("hevc", "auto"): "libx265",
            ("hevc", "nvenc"): "hevc_nvenc",
            ("hevc", "qsv"): "hevc_qsv",
            ("hevc", "vaapi"): "hevc_vaapi",
        }
        for (codec, encoder), expected in cases.items():
            with self.subTest(codec=codec, encoder=encoder):
                settings = _settings(codec=codec, encoder=encoder)
                self.assertEqual(ffmpeg_command.resolve_video_encoder(settings), expected)


class TestOutputNaming(unittest.TestCase):
    def test_is_image_is_case_insensitive(self):
        for name in ("a.png", "b.JPG", "c.jpeg", "d.TIF", "e.tiff", "f.bmp", "g.WebP"):
            with self.subTest(name=name):
                self.assertTrue(ffmpeg_command.is_image(name))
        for name in ("a.mp4", "b.mkv", "png", "c.gif"):
            with self.subTest(name=name):
                self.assertFalse(ffmpeg_command.is_image(name))

    def test_resolve_output_path(self):
        self.assertEqual(
            ffmpeg_command.resolve_output_path(Path("/videos/clip.MKV")),
            Path("/videos/clip_[restored].mp4"),
        )
        self.assertEqual(
            ffmpeg_command.resolve_output_path(Path("/photos/scan.JPG"), Path("/out")),
            Path("/out/scan_[restored].png"),
        )


class TestBuildCommand(unittest.TestCase):
    def _build(self, settings, *, image=False, output="out.mp4", **kwargs):
        return ffmpeg_command.build_ffmpeg_command(
            "ffmpeg",
            "in.mp4",
            output,
            "CHAIN",
            settings,
            image=image,
            **kwargs,
        )

    def test_default_video_command(self):
        self.assertEqual(
            self._build(DEFAULT_SETTINGS),
            [
                "ffmpeg", "-hide_banner", "-loglevel", "error", "-stats", "-y",
                "-i", "in.mp4",
                "-vf", "CHAIN", "-map", "0:v:0", "-map", "0:a?",
                "-c:v", "libx264",
                "-pix_fmt", "yuv420p",
                "-preset", "slow", "-crf", "16",
                "-c:a", "aac", "-b:a", "192k",
                "-movflags", "+faststart",
                "out.mp4",
            ],
        )

    def test_hevc_software_encode_adds_tag_and_params(self):
        cmd = self._build(_settings(codec="hevc"))
        self.assertIn("libx265", cmd)
        self.assertEqual(cmd[cmd.index("-tag:v") + 1], "hvc1")
        self.assertEqual(cmd[cmd.index("-x265-params") + 1], "aq-mode=3:psy-rd=2.0:deblock=-2,-2")

    def test_hevc_nvenc_ten_bit(self):
        cmd = self._build(_settings(use10=1, encoder="nvenc", codec="hevc"))
        self.assertEqual(cmd[cmd.index("-c:v") + 1], "hevc_nvenc")
        self.assertEqual(cmd[cmd.index("-pix_fmt") + 1], "p010le")
        self.assertIn("-tag:v", cmd)
        self.assertNotIn("-x265-params", cmd)

    def test_vaapi_skips_preset_and_crf(self):
        cmd = self._build(_settings(encoder="vaapi"))
        self.assertEqual(cmd[cmd.index("-c:v") + 1], "h264_vaapi")
        self.assertNotIn("-preset", cmd)
        self.assertNotIn("-crf", cmd)

    def test_optional_flags(self):
        cmd = self._build(
            _settings(hwaccel="cuda", threads=4, audio_mode="copy", movflags="", crf="18.5")
        )
        self.assertEqual(cmd[6:10], ["-hwaccel", "cuda", "-i", "in.mp4"])
        self.assertEqual(cmd[cmd.index("-threads") + 1], "4")
        self.assertEqual(cmd[cmd.index("-crf") + 1], "18.5")
        self.assertEqual(cmd[cmd.index("-c:a") + 1], "copy")
        self.assertNotIn("-b:a", cmd)
        self.assertNotIn("-movflags", cmd)

    def test_image_requests_single_frame(self):
        cmd = self._build(DEFAULT_SETTINGS, image=True, output="out.png")
        self.assertEqual(cmd[-3:], ["-frames:v", "1", "out.png"])
        self.assertNotIn("-c:v", cmd)
        self.assertNotIn("-c:a", cmd)

    def test_preview_splits_graph_and_appends_display_branch(self):
        cmd = self._build(_settings(preview=1))
        self.assertNotIn("-vf", cmd)
        self.assertEqual(cmd[cmd.index("-filter_complex") + 1], "[0:v]CHAIN,split=2[main][prev]")
        self.assertEqual(cmd[cmd.index("-filter_complex") + 2:cmd.index("-filter_complex") + 6],
                         ["-map", "[main]", "-map", "0:a?"])
        output_index = cmd.index("out.mp4")
        self.assertEqual(
            cmd[output_index + 1:],
            ["-map", "[prev]", "-c:v", "rawvideo", "-f", "sdl", "Live Preview"],
        )

    def test_preview_uses_custom_sink(self):
        sink = mock.Mock()
        sink.output_args.return_value = ["-f", "null", "-"]
        cmd = self._build(_settings(preview=1), preview_sink=sink)
        self.assertEqual(cmd[-4:], ["[prev]", "-f", "null", "-"])

    def test_command_is_deterministic(self):
        settings = _settings(codec="hevc", preview=1, hwaccel="qsv")
        self.assertEqual(self._build(settings), self._build(settings))


if __name__ == "__main__":
    unittest.main()
