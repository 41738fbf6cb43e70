import subprocess
import unittest
from pathlib import Path
from unittest import mock

import ffmpeg_progress
from ffmpeg_progress import FFmpegProgressSink, format_time, parse_progress_line, parse_time_string
from process_supervisor import STDERR, STDOUT


class TestTimeStrings(unittest.TestCase):
    def test_parse_minutes_and_hours(self):
        self.assertEqual(parse_time_string("1:30.00"), 90.0)
        self.assertEqual(parse_time_string("1:30:45.00"), 5445.0)
        self.assertEqual(parse_time_string("00:01:30.50"), 90.5)

    def test_parse_rejects_zero_and_malformed(self):
        for text in ("00:00:00.00", "bad", "12", "a:b", "1:2:3:4"):
            with self.subTest(text=text):
                self.assertIsNone(parse_time_string(text))

    def test_format_time(self):
        self.assertEqual(format_time(90.0), "1:30")
        self.assertEqual(format_time(3661.0), "1:01:01")
        self.assertEqual(format_time(0.0), "0:00")
        self.assertEqual(format_time(36661.0), "10:11:01")
        self.assertEqual(format_time(90.7), "1:30")
        self.assertEqual(format_time(-10.0), "0:00")


class TestParseProgressLine(unittest.TestCase):
    def test_duration_is_read_when_unknown(self):
        state = parse_progress_line("Duration: 00:01:30.50, start: 0.000000, bitrate: 1000 kb/s", 0.0)
        self.assertEqual(state.new_duration, 90.5)
        self.assertIsNone(state.time_string)

        known = parse_progress_line("Duration: 00:01:30.50, start: 0.000000", 60.0)
        self.assertIsNone(known.new_duration)

    def test_status_line_fields(self):
        state = parse_progress_line("frame= 100 fps=5.0 time=00:00:03.20 bitrate= 1000.0kbits/s", 100.0)
        self.assertEqual(state.fps, "5.0")
        self.assertEqual(state.time_string, "00:00:03.20")
        self.assertEqual(state.seconds, 3.2)

    def test_progress_and_eta(self):
        state = parse_progress_line("frame= 50 fps=5.0 time=00:00:25.00 bitrate= 1000.0kbits/s", 100.0)
        self.assertAlmostEqual(state.progress, 0.25)
        self.assertEqual(state.eta, "1:15")

    def test_progress_is_monotonic_over_updates(self):
        last = 0.0
        for timestamp in ("00:00:25.00", "00:00:50.00", "00:01:15.00"):
            state = parse_progress_line(f"frame= 1 fps=5.0 time={timestamp}", 100.0)
            self.assertGreaterEqual(state.progress, last)
            last = state.progress
        self.assertAlmostEqual(last, 0.75)

    def test_unknown_duration_has_no_eta(self):
        state = parse_progress_line("frame= 50 fps=5.0 time=00:00:25.00", 0.0)
        self.assertIsNone(state.progress)
        self.assertEqual(state.eta, "--:--")

    def test_zero_fps_has_no_eta(self):
        state = parse_progress_line("frame= 100 fps=0.0 time=00:00:25.00", 100.0)
        self.assertEqual(state.fps, "0.0")
        self.assertEqual(state.eta, "--:--")

    def test_progress_past_the_end_is_clamped(self):
        state = parse_progress_line("frame= 200 fps=5.0 time=00:01:50.00", 100.0)
        self.assertEqual(state.progress, 1.0)
        self.assertEqual(state.eta, "0:00")

    def test_lines_without_status(self):
        for line in ("", "Some other ffmpeg output line", "frame= 100", "frame= abc fps=invalid time=bad"):
            with self.subTest(line=line):
                state = parse_progress_line(line, 100.0)
                self.assertIsNone(state.time_string)
                self.assertIsNone(state.progress)

    def test_large_time_values(self):
        state = parse_progress_line("frame= 100 fps=5.0 time=99:59:59.99", 400000.0)
        self.assertEqual(state.time_string, "99:59:59.99")
        self.assertLess(state.progress, 1.0)


class TestFFmpegProgressSink(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("ffmpeg_progress.progress_write")
        self.write = patcher.start()
        self.addCleanup(patcher.stop)
        self.bar = mock.Mock(n=0)

        def update(delta):
            self.bar.n += delta

        self.bar.update.side_effect = update

    def test_status_lines_drive_the_bar(self):
        sink = FFmpegProgressSink(100.0, bar=self.bar)
        sink(STDERR, "frame=  50 fps=5.0 time=00:00:25.00 bitrate=1k\r")
        sink(STDERR, "frame= 100 fps=5.0 time=00:00:")
        sink(STDERR, "50.00 bitrate=1k\r")
        sink.close()

        self.assertEqual(self.bar.n, 50.0)
        self.bar.set_postfix.assert_called_with(fps="5.0", eta="0:50", refresh=False)
        self.bar.close.assert_called_once()
        self.write.assert_not_called()
        self.assertEqual(sink.state.progress, 0.5)

    def test_bar_never_moves_backwards_or_past_total(self):
        sink = FFmpegProgressSink(10.0, bar=self.bar)
        sink(STDERR, "fps=5.0 time=00:00:08.00\rfps=5.0 time=00:00:04.00\rfps=5.0 time=00:00:30.00\r")
        self.assertEqual(self.bar.n, 10.0)

    def test_other_lines_are_logged(self):
        sink = FFmpegProgressSink(bar=self.bar)
        sink(STDERR, "Error opening filters!\n")
        sink(STDOUT, "hello\n")
        sink(STDERR, "trailing")
        sink.close()
        self.assertEqual(
            [call.args[0] for call in self.write.call_args_list],
            ["Error opening filters!", "hello", "trailing"],
        )
        self.bar.update.assert_not_called()

    def test_duration_line_sets_bar_total(self):
        sink = FFmpegProgressSink(bar=self.bar)
        sink(STDERR, "  Duration: 00:01:30.50, start: 0.000000\n")
        self.assertEqual(sink.duration, 90.5)
        self.assertEqual(self.bar.total, 90.5)

    def test_bar_is_created_on_first_status_line(self):
        with mock.patch("ffmpeg_progress.tqdm") as tqdm:
            tqdm.return_value = self.bar
            sink = FFmpegProgressSink(60.0, desc="clip.mp4")
            sink(STDERR, "Press [q] to stop\n")
            tqdm.assert_not_called()
            sink(STDERR, "fps=30 time=00:00:06.00\r")
        tqdm.assert_called_once_with(total=60.0, desc="clip.mp4", unit="s", leave=False)
        self.assertEqual(self.bar.n, 6.0)


class TestReadMediaDuration(unittest.TestCase):
    def test_reads_format_duration(self):
        completed = subprocess.CompletedProcess([], 0, stdout='{"format": {"duration": "12.5"}}', stderr="")
        with mock.patch("ffmpeg_progress.locate_ffprobe", return_value="/usr/bin/ffprobe"):
            with mock.patch("ffmpeg_progress.subprocess.run", return_value=completed) as run:
                self.assertEqual(ffmpeg_progress.read_media_duration("/usr/bin/ffmpeg", Path("a.mp4")), 12.5)
        cmd = run.call_args.args[0]
        self.assertEqual(cmd[0], "/usr/bin/ffprobe")
        self.assertEqual(cmd[-1], "a.mp4")

    def test_unreadable_duration_is_zero(self):
        failure = subprocess.CalledProcessError(1, ["ffprobe"])
        bad_json = subprocess.CompletedProcess([], 0, stdout="not json", stderr="")
        no_duration = subprocess.CompletedProcess([], 0, stdout='{"format": {"duration": "N/A"}}', stderr="")
        for outcome in (failure, bad_json, no_duration):
            with self.subTest(outcome=outcome):
                with mock.patch("ffmpeg_progress.locate_ffprobe", return_value="/usr/bin/ffprobe"):
                    with mock.patch("ffmpeg_progress.subprocess.run", side_effect=[outcome]):
                        self.assertEqual(ffmpeg_progress.read_media_duration("ffmpeg", Path("a.mp4")), 0.0)

    def test_missing_ffprobe_is_zero(self):
        with mock.patch("ffmpeg_progress.locate_ffprobe", return_value=None):
            with mock.patch("ffmpeg_progress.subprocess.run") as run:
                self.assertEqual(ffmpeg_progress.read_media_duration("ffmpeg", Path("a.mp4")), 0.0)
        run.assert_not_called()


if __name__ == "__main__":
    unittest.main()
