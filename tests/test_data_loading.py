from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from loyalty.data_loading import (
    assert_survey_design,
    frequency_table,
    get_variable_info,
    load_survey,
    parse_responses,
)

pytestmark = pytest.mark.unit


def _raw(**overrides) -> pd.DataFrame:
    data = {
        "ID": ["1", "2", "3", "4"],
        "loy_1": ["4", "3", " 2", "1"],
        "loy_2": ["4", "4", "3", "2"],
        "loy_3": ["3", "4", "2", "1"],
        "loy_4": ["4", "3", "2", "2"],
        "com": ["1", "", "3", "9"],
    }
    data.update(overrides)
    return pd.DataFrame(data)


def test_load_survey_reads_every_cell_as_text(tmp_path) -> None:
    path = tmp_path / "survey.csv"
    path.write_text("ID;loy_1;com\n1;4;\n2;3;2\n", encoding="utf-8")

    df = load_survey(path, delimiter=";")

    assert list(df.columns) == ["ID", "loy_1", "com"]
    assert df.loc[0, "com"] == ""
    assert df.loc[1, "loy_1"] == "3"


def test_parse_responses_blank_becomes_nan() -> None:
    parsed = parse_responses(_raw())

    assert np.isnan(parsed.loc[1, "com"])
    assert parsed.loc[2, "loy_1"] == 2.0
    assert parsed.loc[3, "com"] == 9.0
    assert list(parsed["ID"]) == ["1", "2", "3", "4"]


@pytest.mark.parametrize("bad", ["abc", "2.5", "x1"])
def test_parse_responses_rejects_non_integer(bad: str) -> None:
    with pytest.raises(ValueError, match="com"):
        parse_responses(_raw(com=["1", bad, "2", "3"]))


def test_parse_responses_unknown_column_raises() -> None:
    with pytest.raises(ValueError, match="not in data"):
        parse_responses(_raw(), columns=["loy_1", "nope"])


def test_assert_survey_design_accepts_sentinel_codes() -> None:
    summary = assert_survey_design(parse_responses(_raw()))
    assert summary["n_rows"] == 4


def test_assert_survey_design_rejects_duplicate_ids() -> None:
    parsed = parse_responses(_raw(ID=["1", "1", "3", "4"]))
    with pytest.raises(AssertionError, match="duplicated"):
        assert_survey_design(parsed)


def test_assert_survey_design_rejects_codes_outside_codebook() -> None:
    parsed = parse_responses(_raw(com=["1", "7", "3", "2"]))
    with pytest.raises(AssertionError, match="outside codebook"):
        assert_survey_design(parsed)


def test_frequency_table_excludes_sentinel() -> None:
    parsed = parse_responses(_raw())
    freq = frequency_table(parsed, "com")

    assert list(freq["value"]) == [1.0, 3.0]
    assert freq["n"].sum() == 2
    assert freq["pct"].sum() == pytest.approx(100.0)


def test_variable_info_counts_blank_and_no_answer() -> None:
    info = get_variable_info(parse_responses(_raw())).set_index("variable")

    assert info.loc["com", "n_blank"] == 1
    assert info.loc["com", "n_no_answer"] == 1
    assert info.loc["com", "n_valid"] == 2
