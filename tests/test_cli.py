import unittest

import cli
from restore_errors import InvalidOptions
from restore_settings import (
    DEFAULT_SETTINGS,
    AudioMode,
    DebandMethod,
    SharpenMethod,
    settings_from_mapping,
)


class TestParseCliOverrides(unittest.TestCase):
    def test_detects_explicit_options(self):
        overrides = cli.parse_cli_overrides(
            ["in.mp4", "-c", "18", "--hevc", "--no-grain", "--scale=3", "--dry-run"]
        )
        self.assertEqual(overrides, {"crf", "codec", "no_grain", "scale_factor"})

    def test_attached_short_option_values(self):
        self.assertEqual(cli.parse_cli_overrides(["-c18", "-fsource"]), {"crf", "fps"})

    def test_stops_at_double_dash(self):
        self.assertEqual(cli.parse_cli_overrides(["--", "--crf"]), set())


class TestApplyCliOverrides(unittest.TestCase):
    def _apply(self, argv, base=DEFAULT_SETTINGS):
        args = cli.parse_args(argv)
        return cli.apply_cli_overrides(base, args, cli.parse_cli_overrides(argv))

    def test_untyped_options_keep_base_values(self):
        base = settings_from_mapping({"crf": 10, "denoiser": "hqdn3d"})
        settings = self._apply(["in.mp4"], base=base)
        self.assertIs(settings, base)

    def test_typed_options_are_applied(self):
        settings = self._apply(
            ["in.mp4", "--fps", "source", "--10bit", "--audio-copy", "--no-eq", "--lut", "/l.cube"]
        )
        self.assertEqual(settings.fps, "source")
        self.assertTrue(settings.use10)
        self.assertEqual(settings.audio_mode, AudioMode.COPY)
        self.assertTrue(settings.kill.eq)
        self.assertEqual(settings.lut3d_file, "/l.cube")

    def test_usm_radius_selects_unsharp(self):
        settings = self._apply(["in.mp4", "--usm-radius", "9"])
        self.assertEqual(settings.primary.sharpen_method, SharpenMethod.UNSHARP)
        self.assertEqual(settings.primary.usm_radius, 9)

    def test_explicit_sharpen_method_wins_over_implied(self):
        settings = self._apply(["in.mp4", "--usm-radius", "9", "--sharpen-method", "cas"])
        self.assertEqual(settings.primary.sharpen_method, SharpenMethod.CAS)

    def test_f3kdb_range_selects_f3kdb(self):
        settings = self._apply(["in.mp4", "--f3kdb-range", "20"])
        self.assertEqual(settings.primary.deband_method, DebandMethod.F3KDB)
        self.assertEqual(settings.primary.f3kdb_range, 20)

    def test_set_reaches_second_pass_keys(self):
        settings = self._apply(["in.mp4", "--set", "use_denoise_2=1", "--set", "denoise_strength_2=4"])
        self.assertTrue(settings.secondary.use_denoise)
        self.assertEqual(settings.secondary.denoise_strength, 4.0)

    def test_set_requires_key_value(self):
        with self.assertRaises(InvalidOptions):
            self._apply(["in.mp4", "--set", "use_denoise_2"])


class TestValidateRuntimeArgs(unittest.TestCase):
    def test_input_is_required(self):
        with self.assertRaises(InvalidOptions):
            cli.validate_runtime_args(cli.parse_args([]))

    def test_preset_commands_do_not_need_input(self):
        cli.validate_runtime_args(cli.parse_args(["--list-presets"]))
        cli.validate_runtime_args(cli.parse_args(["--save-preset", "night"]))


if __name__ == "__main__":
    unittest.main()
