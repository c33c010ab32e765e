import pytest

from clinicflow import extractor
from clinicflow import models


class TestExtract:
    """Free-text notes to (name, type) pairs."""

    def test_standard_bill_notes(self):
        tests = extractor.extract("Fever - Consultation Fee: ₹500, Tests: CBC Test, Dengue Test")
        assert [t.name for t in tests] == ["CBC Test", "Dengue Test"]
        assert [t.type for t in tests] == [models.TestType.BLOOD, models.TestType.BLOOD]

    def test_same_output_on_repeat(self):
        notes = "Flu - Consultation Fee: ₹300, Tests: X-Ray, Urine Routine; MRI Scan"
        assert extractor.extract(notes) == extractor.extract(notes)

    @pytest.mark.parametrize("notes", ["", "   ", None, "Consultation Fee: ₹500"])
    def test_no_tests(self, notes):
        assert extractor.extract(notes) == []

    def test_empty_test_list_in_generated_notes(self):
        assert extractor.extract("Fever - Consultation Fee: ₹500, Tests: ") == []

    def test_mixed_separators_and_connectives(self):
        tests = extractor.extract("Lab Tests: Blood Sugar Test | Urine Culture & and ; CT Scan")
        assert [t.name for t in tests] == ["Blood Sugar Test", "Urine Culture", "CT Scan"]
        assert [t.type for t in tests] == [
            models.TestType.BLOOD, models.TestType.URINE, models.TestType.IMAGING,
        ]

    def test_section_stops_at_full_stop(self):
        tests = extractor.extract("Tests: ECG, Ultrasound. Review in two weeks with Reports")
        assert [t.name for t in tests] == ["ECG", "Ultrasound"]

    def test_strips_leading_test_prefix(self):
        tests = extractor.extract("Test Names: test Malaria, Tests Typhoid")
        assert [t.name for t in tests] == ["Malaria", "Typhoid"]

    def test_strips_punctuation_after_test_prefix(self):
        tests = extractor.extract("Tests: Test-Glucose, Test: Lipid Profile, ECG")
        assert [t.name for t in tests] == ["Glucose", "Lipid Profile", "ECG"]

    def test_drops_fee_words_and_short_tokens(self):
        tests = extractor.extract("Tests: Amount due, ab, Fee waived, Liver Function Test")
        assert [t.name for t in tests] == ["Liver Function Test"]

    def test_duplicates_collapsed(self):
        tests = extractor.extract("Tests: ECG, ecg, ECG")
        assert [t.name for t in tests] == ["ECG"]

    def test_fallback_to_capitalised_words(self):
        tests = extractor.extract("Patient needs Hemoglobin Thyroid Panel checked by Doctor")
        assert [t.name for t in tests] == ["Hemoglobin", "Thyroid", "Panel"]

    def test_fallback_is_capped(self):
        tests = extractor.extract("Alpha Bravo Charlie Delta Echoes Foxtrot Golfer")
        assert len(tests) == extractor.FALLBACK_LIMIT

    def test_never_raises(self, monkeypatch):
        def boom(notes):
            raise RuntimeError("regex engine exploded")

        monkeypatch.setattr(extractor, "extract_names", boom)
        assert extractor.extract("Tests: CBC") == []


class TestInferType:

    @pytest.mark.parametrize("name, expected", [
        ("CBC Test", models.TestType.BLOOD),
        ("ECG", models.TestType.BLOOD),
        ("Kidney Function Test", models.TestType.BLOOD),
        ("Hemoglobin", models.TestType.BLOOD),
        ("Urine Routine", models.TestType.URINE),
        ("Chest X-Ray", models.TestType.IMAGING),
        ("CT Scan", models.TestType.IMAGING),
        ("Ultrasound", models.TestType.IMAGING),
        ("Electrolytes", models.TestType.OTHER),
        ("Allergy Panel", models.TestType.OTHER),
    ])
    def test_categories(self, name, expected):
        assert extractor.infer_test_type(name) == expected
