#!/usr/bin/env python3
"""
Analyze throughput CSV data recorded by ifstat.py with CDF generation
"""
import os

import click
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from ifstat import HEADER, TIMESTAMP_FORMAT

PERCENTILES = [50, 90, 99]


def load_records(csv_file):
    """
    Load an ifstat CSV file

    Returns a DataFrame with columns date, elapsed (seconds since the first
    record), in_bps and out_bps.
    """
    df = pd.read_csv(csv_file)
    if list(df.columns) != HEADER:
        raise click.ClickException(f"{csv_file} is not an ifstat file (header: {list(df.columns)})")

    df.columns = ['date', 'in_bps', 'out_bps']
    df['date'] = pd.to_datetime(df['date'], format=TIMESTAMP_FORMAT)
    start = df['date'].iloc[0] if len(df) else pd.NaT
    df['elapsed'] = (df['date'] - start).dt.total_seconds()
    return df[['date', 'elapsed', 'in_bps', 'out_bps']]


def find_active_period(rates, column, threshold_pct=0.15):
    """
    Find first and last samples above threshold_pct of the maximum rate
    Returns: (start_idx, end_idx) or (None, None) if there is no traffic
    """
    values = rates[column].values
    if len(values) == 0 or values.max() == 0:
        return None, None

    above_threshold = values > values.max() * threshold_pct
    start_idx = int(np.argmax(above_threshold))
    end_idx = int(len(above_threshold) - 1 - np.argmax(above_threshold[::-1]))
    return start_idx, end_idx


def summarize_rates(df):
    """Throughput statistics per direction, the first record carries no rate and is skipped"""
    rates = df.iloc[1:]
    intervals = df['elapsed'].diff().iloc[1:]

    summary = {
        'samples': len(rates),
        'duration': float(df['elapsed'].iloc[-1]) if len(df) else 0.0,
    }
    for direction in ('in', 'out'):
        values = rates[f'{direction}_bps']
        summary[direction] = {
            'mean': float(values.mean()),
            'max': int(values.max()),
            'std': float(values.std(ddof=0)),
            **{f'p{p}': float(np.percentile(values, p)) for p in PERCENTILES},
            'total_bytes': int((values * intervals).sum()),
        }
    return summary


def generate_cdf(data, title, output_file=None):
    """
    Generate and save CDF plot for throughput data
    """
    nonzero_data = data[data > 0]
    if len(nonzero_data) == 0:
        print(f"No non-zero data for {title} CDF")
        return

    sorted_data = np.sort(nonzero_data)
    cdf = np.arange(1, len(sorted_data) + 1) / len(sorted_data)

    plt.figure(figsize=(10, 6))
    plt.plot(sorted_data, cdf, linewidth=2)
    plt.grid(True, alpha=0.3)
    plt.xlabel('Throughput (bytes/s)')
    plt.ylabel('Cumulative Probability')
    plt.title(f'{title} - CDF')

    for p in PERCENTILES:
        value = np.percentile(sorted_data, p)
        plt.axhline(y=p/100, color='gray', linestyle='--', alpha=0.5)
        plt.axvline(x=value, color='gray', linestyle='--', alpha=0.5)
        plt.text(value, 0.05, f'P{p}: {value:.0f}', rotation=90,
                 verticalalignment='bottom', fontsize=8)

    plt.ylim(0, 1)
    plt.xlim(0, sorted_data.max() * 1.05)

    if output_file:
        plt.savefig(output_file, dpi=150, bbox_inches='tight')
        print(f"CDF saved to: {output_file}")
    else:
        plt.show()

    plt.close()


def print_summary(rates, summary, threshold_pct):
    print("\n=== Interface Throughput Analysis ===")
    print(f"Duration: {summary['duration']:.1f}s | Samples: {summary['samples']}")

    for direction, label in (('in', 'Input'), ('out', 'Output')):
        stats = summary[direction]
        print(f"\n{label}: Avg={stats['mean']:.0f} B/s, Max={stats['max']} B/s, Std={stats['std']:.0f}")
        print("  " + ", ".join(f"P{p}={stats[f'p{p}']:.0f}" for p in PERCENTILES))
        print(f"  Transferred: ~{stats['total_bytes'] / 1e6:.2f} MB")

        start_idx, end_idx = find_active_period(rates, f'{direction}_bps', threshold_pct)
        if start_idx is None:
            print("  No traffic recorded")
        else:
            start = rates['elapsed'].iloc[start_idx]
            end = rates['elapsed'].iloc[end_idx]
            print(f"  Active: {start:.0f}s - {end:.0f}s ({end_idx - start_idx + 1} samples "
                  f"above {threshold_pct * 100:.0f}% of max)")


@click.command()
@click.argument('csv_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--save-plots', is_flag=True, help='Save CDF plots to files instead of displaying')
@click.option('--threshold', default=0.15, type=click.FloatRange(0, 1),
              help='Fraction of the maximum rate that counts as active traffic')
def main(csv_file, save_plots, threshold):
    """Analyze ifstat throughput CSV data with CDF generation"""
    if os.path.getsize(csv_file) == 0:
        raise click.ClickException(f"Empty file: {csv_file}")

    df = load_records(csv_file)
    if len(df) < 2:
        print(f"Insufficient data: only {len(df)} records (need at least 2 for analysis)")
        return

    # The first record carries no rate
    rates = df.iloc[1:]
    summary = summarize_rates(df)
    print_summary(rates, summary, threshold)

    base_filename = os.path.splitext(csv_file)[0]
    for direction, title in (('in', 'Input Throughput'), ('out', 'Output Throughput')):
        output = f"{base_filename}_{direction}_cdf.png" if save_plots else None
        generate_cdf(rates[f'{direction}_bps'].values, title, output)


if __name__ == "__main__":
    main()
