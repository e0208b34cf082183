import pytest

from gentle_build.config import (
    BibliographyStyle,
    BuildConfig,
    OutputFormat,
    parse_setting_args,
)
from gentle_build.errors import ConfigError


def test_overrides_convert_strings():
    config = BuildConfig().with_overrides(
        {
            "output_format": "plain",
            "strict-macros": "no",
            "bibliography_style": "first-use",
            "parallel_workers": "4",
            "bib_files": "a.bib, b.bib",
            "reference_prefix": "ref-",
        }
    )
    assert config.output_format == OutputFormat.Plain
    assert config.strict_macros is False
    assert config.bibliography_style == BibliographyStyle.FirstUse
    assert config.parallel_workers == 4
    assert config.bib_files == ["a.bib", "b.bib"]
    assert config.reference_prefix == "ref-"


def test_overrides_accept_typed_values():
    config = BuildConfig().with_overrides({"output_format": OutputFormat.Plain, "emit_minimal_bib": True})
    assert config.output_format == OutputFormat.Plain
    assert config.emit_minimal_bib is True


def test_overrides_dont_change_the_original():
    base = BuildConfig()
    base.with_overrides({"strict_macros": "false"})
    assert base.strict_macros is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"no_such_setting": "1"},
        {"strict_macros": "maybe"},
        {"parallel_workers": "many"},
        {"output_format": "pdf"},
        {"parallel_workers": "0"},
        {"output_format": "plain", "split_chapters": "true"},
    ],
)
def test_bad_overrides(overrides):
    with pytest.raises(ConfigError):
        BuildConfig().with_overrides(overrides)


def test_empty_output_file_name_means_default():
    assert BuildConfig(output_file_name="x.html").with_overrides({"output_file_name": ""}).output_file_name is None


def test_parse_setting_args():
    assert parse_setting_args(None) == {}
    assert parse_setting_args(["reference_prefix:tut-", "output_file_name:a:b.html"]) == {
        "reference_prefix": "tut-",
        "output_file_name": "a:b.html",
    }
    with pytest.raises(ConfigError):
        parse_setting_args(["no-colon"])
