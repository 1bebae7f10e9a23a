from forum_watcher import text_normalizer
from forum_watcher.text_normalizer import UNDETERMINED, detect_language, normalize, normalize_basic


def test_normalize_basic_collapses_whitespace_and_zero_width():
    assert normalize_basic('  brand\u200b   kit\n\tlogo\ufeff ') == 'brand kit logo'
    assert normalize_basic('') == ''
    assert normalize_basic(None) == ''


def test_short_text_is_undetermined():
    assert detect_language('logo') == UNDETERMINED
    assert detect_language('') == UNDETERMINED


def test_english_text_is_tokenized_and_stemmed(monkeypatch):
    monkeypatch.setattr(text_normalizer, 'detect_language', lambda text: 'eng')

    result = normalize('Exporting   Brand-Kits!')

    assert result.language_code == 'eng'
    assert result.plain_text == 'exporting brand-kits!'
    assert result.tokens == ['exporting', 'brand', 'kits']
    assert result.stems == ['export', 'brand', 'kit']


def test_non_english_text_has_no_stems(monkeypatch):
    monkeypatch.setattr(text_normalizer, 'detect_language', lambda text: 'deu')

    result = normalize('Markenvorlagen für Logos exportieren')

    assert result.language_code == 'deu'
    assert result.tokens == ['markenvorlagen', 'für', 'logos', 'exportieren']
    assert result.stems == []


def test_empty_text():
    result = normalize('')
    assert result.plain_text == ''
    assert result.tokens == []
    assert result.stems == []
