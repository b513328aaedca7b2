import unittest

from aqi_colors import (
    AQI_BANDS,
    NO_DATA_COLOR,
    VARIABLE_CONFIGS,
    aqi_color,
    color_to_rgb,
    generate_bands,
    get_variable_config,
    legend_for_variable,
    metric_color,
    sequential_color,
)


class AqiColorTests(unittest.TestCase):
    def test_aqi_color_hits_stop_colors_exactly(self):
        self.assertEqual(aqi_color(0), "rgb(34,197,94)")
        self.assertEqual(aqi_color(100), "rgb(234,179,8)")
        self.assertEqual(aqi_color(150), "rgb(249,115,22)")
        self.assertEqual(aqi_color(200), "rgb(239,68,68)")
        self.assertEqual(aqi_color(300), "rgb(168,85,247)")
        self.assertEqual(aqi_color(500), "rgb(153,27,27)")

    def test_aqi_color_blends_between_stops(self):
        self.assertEqual(aqi_color(62.5), "rgb(134,188,51)")
        self.assertEqual(aqi_color(120), "rgb(246,128,19)")

    def test_aqi_color_clamps_out_of_range(self):
        self.assertEqual(aqi_color(-10), aqi_color(0))
        self.assertEqual(aqi_color(900), aqi_color(500))

    def test_no_data_is_gray(self):
        self.assertEqual(aqi_color(None), NO_DATA_COLOR)
        self.assertEqual(sequential_color(None), NO_DATA_COLOR)
        for config in VARIABLE_CONFIGS:
            self.assertEqual(metric_color(None, config), NO_DATA_COLOR)


class SequentialColorTests(unittest.TestCase):
    def test_endpoints_match_first_and_last_stop(self):
        self.assertEqual(sequential_color(0.0), "rgb(34,197,94)")
        self.assertEqual(sequential_color(1.0), "rgb(239,68,68)")
        self.assertEqual(sequential_color(-1.0), sequential_color(0.0))
        self.assertEqual(sequential_color(2.0), sequential_color(1.0))

    def test_midpoint_rounds_half_up(self):
        self.assertEqual(sequential_color(0.5), "rgb(242,147,15)")

    def test_continuous_at_internal_breakpoints(self):
        for k in (1, 2):
            t = k / 3
            below = color_to_rgb(sequential_color(t - 1e-9))
            above = color_to_rgb(sequential_color(t + 1e-9))
            at = color_to_rgb(sequential_color(t))
            for channel in range(3):
                self.assertLessEqual(abs(below[channel] - at[channel]), 1)
                self.assertLessEqual(abs(above[channel] - at[channel]), 1)


class VariableConfigTests(unittest.TestCase):
    def test_dispatch_is_static_per_metric(self):
        self.assertEqual(metric_color(100, get_variable_config("us_aqi")), aqi_color(100))
        self.assertEqual(metric_color(100, get_variable_config("european_aqi")), aqi_color(100))
        self.assertEqual(metric_color(75, get_variable_config("pm2_5")), sequential_color(0.5))
        self.assertEqual(metric_color(1.0, get_variable_config("aerosol_optical_depth")), sequential_color(0.5))

    def test_unknown_key_falls_back_to_default(self):
        self.assertEqual(get_variable_config("nope").key, "us_aqi")

    def test_default_legend_is_fixed_aqi_table(self):
        bands = legend_for_variable("us_aqi")
        self.assertEqual(bands, list(AQI_BANDS))
        self.assertEqual(
            [b.label for b in bands],
            ["Good", "Moderate", "USG", "Unhealthy", "Very Unhealthy", "Hazardous"],
        )
        self.assertEqual([(b.min, b.max) for b in bands][-1], (301, 500))

    def test_generated_bands_split_domain_evenly(self):
        bands = generate_bands(get_variable_config("pm10"))
        self.assertEqual([b.label for b in bands], ["Low", "Moderate", "Elevated", "High", "Very High"])
        self.assertEqual([b.min for b in bands], [0.0, 60.0, 120.0, 180.0, 240.0])
        self.assertEqual(bands[-1].max, 300.0)
        self.assertEqual(bands[0].color, sequential_color(0.1))
        self.assertEqual(bands[2].color, sequential_color(0.5))
        self.assertEqual(len(legend_for_variable("ozone")), 5)

    def test_color_to_rgb_parses_both_forms(self):
        self.assertEqual(color_to_rgb(NO_DATA_COLOR), (107, 114, 128))
        self.assertEqual(color_to_rgb("rgb(1,2,3)"), (1, 2, 3))
        with self.assertRaises(ValueError):
            color_to_rgb("blue")


if __name__ == "__main__":
    unittest.main()
