import unittest

from analysis import (
    PumpStatusAnalyzer,
    clean_text,
    extract_current,
    levenshtein,
    match_keyword,
    parse_confidence,
)
from core.config import AnalyzerThresholds, ConfigSnapshot, ConfigurationHub
from core.contracts import PumpStatus


def _analyzer(**thresholds) -> PumpStatusAnalyzer:
    snapshot = ConfigSnapshot(analysis=AnalyzerThresholds(**thresholds))
    return PumpStatusAnalyzer(ConfigurationHub(snapshot))


class TextCleanupTests(unittest.TestCase):
    def test_clean_text_strips_noise_and_maps_confusions(self):
        self.assertEqual(clean_text("  5.2A! "), "5.2A")
        self.assertEqual(clean_text("O.lS"), "0.15")
        self.assertEqual(clean_text("dry"), "DRY")
        self.assertEqual(clean_text("dry", uppercase=False), "dry")
        self.assertEqual(clean_text(None), "")

    def test_levenshtein(self):
        self.assertEqual(levenshtein("dry", "dry"), 0)
        self.assertEqual(levenshtein("dri", "dry"), 1)
        self.assertEqual(levenshtein("", "dry"), 3)
        self.assertEqual(levenshtein("kitten", "sitting"), 3)

    def test_match_keyword_substring_and_distance(self):
        self.assertEqual(match_keyword("WELL DRY NOW", ["Dry"]), "Dry")
        self.assertEqual(match_keyword("DR", ["Dry"]), "Dry")
        self.assertIsNone(match_keyword("5.2", ["Dry"]))

    def test_keyword_passes_through_confusion_mapping(self):
        # "Cycling" becomes "CYC1ING" after cleanup, same as the text would.
        self.assertEqual(match_keyword(clean_text("Cycling"), ["Cycling"]), "Cycling")


class CurrentExtractionTests(unittest.TestCase):
    def test_first_in_range_match_wins(self):
        self.assertEqual(extract_current("5.25", 25.0), (5.25, "5.25"))
        self.assertEqual(extract_current("A 7.5 B 3.2", 25.0), (7.5, "7.5"))
        self.assertEqual(extract_current("12", 25.0), (12.0, "12"))
        self.assertIsNone(extract_current("99", 25.0))
        self.assertIsNone(extract_current("AMPS", 25.0))

    def test_parse_confidence(self):
        self.assertAlmostEqual(parse_confidence("5.2", "5.2"), 1.0)
        self.assertAlmostEqual(parse_confidence("5.2A", "5.2"), 0.75)
        self.assertEqual(parse_confidence("", ""), 0.0)


class AnalyzerTests(unittest.TestCase):
    def test_normal_reading(self):
        reading = _analyzer(idle_current_threshold=2.0).analyze("5.2", 1.0)
        self.assertEqual(reading.status, PumpStatus.NORMAL)
        self.assertAlmostEqual(reading.current_amps, 5.2)
        self.assertTrue(reading.is_valid)

    def test_zero_reading_is_off(self):
        reading = _analyzer(off_current_threshold=1.0, idle_current_threshold=2.0).analyze("0.00")
        self.assertEqual(reading.status, PumpStatus.OFF)
        self.assertEqual(reading.current_amps, 0.0)
        self.assertTrue(reading.is_valid)

    def test_threshold_bands_have_no_gaps(self):
        analyzer = _analyzer(
            off_current_threshold=1.0,
            idle_current_threshold=3.0,
            normal_current_min=3.0,
            normal_current_max=20.0,
            high_current_threshold=20.0,
        )
        for hundredths in range(0, 2001, 7):
            amps = hundredths / 100.0
            text = f"{amps:.2f}"
            with self.subTest(text=text):
                reading = analyzer.analyze(text)
                if amps < 1.0:
                    expected = PumpStatus.OFF
                elif amps < 3.0:
                    expected = PumpStatus.IDLE
                else:
                    expected = PumpStatus.NORMAL
                self.assertEqual(reading.status, expected)
                self.assertTrue(reading.is_valid)

    def test_boundaries_follow_strict_less_than(self):
        analyzer = _analyzer(off_current_threshold=1.0, idle_current_threshold=2.0)
        self.assertEqual(analyzer.analyze("0.99").status, PumpStatus.OFF)
        self.assertEqual(analyzer.analyze("1.00").status, PumpStatus.IDLE)
        self.assertEqual(analyzer.analyze("3.00").status, PumpStatus.NORMAL)
        self.assertEqual(analyzer.analyze("8.00").status, PumpStatus.NORMAL)

    def test_dry_and_near_misses(self):
        analyzer = _analyzer()
        for text in ("Dry", "DRY", "dry", "Dri", "Dy", "Drry", "Well Dry"):
            with self.subTest(text=text):
                reading = analyzer.analyze(text, 0.4)
                self.assertEqual(reading.status, PumpStatus.DRY)
                self.assertTrue(reading.is_valid)
                self.assertIsNone(reading.current_amps)
                self.assertAlmostEqual(reading.confidence, 0.9)

    def test_rapid_cycle_keyword(self):
        reading = _analyzer().analyze("rcyc")
        self.assertEqual(reading.status, PumpStatus.RAPID_CYCLE)
        self.assertEqual(reading.metadata["matched_keyword"], "rcyc")

    def test_dry_checked_before_rapid_cycle(self):
        reading = _analyzer().analyze("DRY rcyc")
        self.assertEqual(reading.status, PumpStatus.DRY)

    def test_empty_and_whitespace_are_unknown(self):
        analyzer = _analyzer()
        for text in ("", "   ", "\t\n", None):
            with self.subTest(text=text):
                reading = analyzer.analyze(text)
                self.assertEqual(reading.status, PumpStatus.UNKNOWN)
                self.assertFalse(reading.is_valid)

    def test_no_number_is_unknown_invalid(self):
        reading = _analyzer().analyze("AMPS")
        self.assertEqual(reading.status, PumpStatus.UNKNOWN)
        self.assertFalse(reading.is_valid)
        self.assertEqual(reading.metadata["reason"], "no_match")

    def test_band_gap_and_high_current_reason(self):
        analyzer = _analyzer()
        gap = analyzer.analyze("1.5")
        self.assertEqual(gap.status, PumpStatus.UNKNOWN)
        self.assertTrue(gap.is_valid)
        self.assertEqual(gap.metadata["reason"], "outside_bands")
        high = analyzer.analyze("22.5")
        self.assertEqual(high.metadata["reason"], "above_high_threshold")

    def test_confidence_combines_ocr_and_parse(self):
        reading = _analyzer().analyze("5.2A", 0.8)
        self.assertAlmostEqual(reading.confidence, 0.8 * 0.75)

    def test_threshold_change_applies_on_next_call(self):
        hub = ConfigurationHub()
        analyzer = PumpStatusAnalyzer(hub)
        self.assertEqual(analyzer.analyze("2.5").status, PumpStatus.UNKNOWN)
        hub.apply_document({"analysis": {"normal_current_min": 2.0}})
        self.assertEqual(analyzer.analyze("2.5").status, PumpStatus.NORMAL)


if __name__ == "__main__":
    unittest.main()
