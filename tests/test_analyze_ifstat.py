import matplotlib

matplotlib.use("Agg")

import click
import numpy as np
import pandas as pd
import pytest
from click.testing import CliRunner

from analyze_ifstat import (
    find_active_period,
    generate_cdf,
    load_records,
    print_summary,
    summarize_rates,
)
from analyze_ifstat import main as analyze_main

RECORDED = """\
date,input in bytes per second,output in bytes per second
2026.10.19 12:00:00,0,0
2026.10.19 12:00:01,100,300
2026.10.19 12:00:02,300,100
"""


@pytest.fixture
def recorded_csv(tmp_path):
    path = tmp_path / "em0.csv"
    path.write_text(RECORDED)
    return path


def test_load_records(recorded_csv):
    df = load_records(recorded_csv)
    assert list(df.columns) == ["date", "elapsed", "in_bps", "out_bps"]
    assert df["date"].iloc[1] == pd.Timestamp(2026, 10, 19, 12, 0, 1)
    assert list(df["elapsed"]) == [0.0, 1.0, 2.0]
    assert list(df["in_bps"]) == [0, 100, 300]


def test_load_records_rejects_foreign_csv(tmp_path):
    path = tmp_path / "other.csv"
    path.write_text("timestamp,bytes_sent,bytes_recv\n2026-10-19T12:00:00,1,2\n")
    with pytest.raises(click.ClickException, match="not an ifstat file"):
        load_records(path)


def test_summarize_rates_skips_first_record(recorded_csv):
    summary = summarize_rates(load_records(recorded_csv))
    assert summary["samples"] == 2
    assert summary["duration"] == 2.0
    assert summary["in"]["mean"] == 200.0
    assert summary["in"]["max"] == 300
    assert summary["in"]["std"] == 100.0
    assert summary["in"]["p50"] == 200.0
    assert summary["in"]["total_bytes"] == 400
    assert summary["out"]["max"] == 300
    assert summary["out"]["total_bytes"] == 400


def test_find_active_period():
    rates = pd.DataFrame({"out_bps": [0, 10, 1000, 900, 5]})
    assert find_active_period(rates, "out_bps") == (2, 3)
    assert find_active_period(rates, "out_bps", threshold_pct=0.001) == (1, 4)


def test_find_active_period_without_traffic():
    assert find_active_period(pd.DataFrame({"in_bps": [0, 0, 0]}), "in_bps") == (None, None)
    assert find_active_period(pd.DataFrame({"in_bps": []}), "in_bps") == (None, None)


def test_generate_cdf_saves_png(tmp_path):
    output = tmp_path / "cdf.png"
    generate_cdf(np.array([0, 100, 200, 300, 400]), "Input Throughput", str(output))
    assert output.read_bytes().startswith(b"\x89PNG")


def test_generate_cdf_all_zero(tmp_path, capsys):
    output = tmp_path / "cdf.png"
    generate_cdf(np.array([0, 0]), "Output Throughput", str(output))
    assert not output.exists()
    assert "No non-zero data" in capsys.readouterr().out


def test_cli_report_and_plots(recorded_csv):
    result = CliRunner().invoke(analyze_main, [str(recorded_csv), "--save-plots"])
    assert result.exit_code == 0, result.output
    assert "Duration: 2.0s | Samples: 2" in result.output
    assert "Input: Avg=200 B/s, Max=300 B/s" in result.output
    assert (recorded_csv.parent / "em0_in_cdf.png").exists()
    assert (recorded_csv.parent / "em0_out_cdf.png").exists()


def test_cli_insufficient_data(tmp_path):
    path = tmp_path / "short.csv"
    path.write_text(RECORDED.splitlines(keepends=True)[0] + "2026.10.19 12:00:00,0,0\n")
    result = CliRunner().invoke(analyze_main, [str(path)])
    assert result.exit_code == 0
    assert "Insufficient data" in result.output


def test_cli_empty_file(tmp_path):
    path = tmp_path / "empty.csv"
    path.touch()
    result = CliRunner().invoke(analyze_main, [str(path)])
    assert result.exit_code == 1
    assert "Empty file" in result.output


def test_print_summary_reports_active_period(recorded_csv, capsys):
    df = load_records(recorded_csv)
    print_summary(df.iloc[1:], summarize_rates(df), 0.5)
    out = capsys.readouterr().out
    assert out.startswith("\n=== Interface Throughput Analysis ===\n")
    assert "Active: 2s - 2s (1 samples above 50% of max)" in out
    assert "Active: 1s - 1s (1 samples above 50% of max)" in out
