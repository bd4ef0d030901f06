#!/usr/bin/env python3
"""
Interface Throughput Sampler - records bytes/sec of one network interface to CSV

Every INTERVAL seconds the cumulative byte counters of INTERFACE are read and
turned into input/output bytes per second. One line per sample is appended to
OUTFILE until SIGINT or SIGTERM is received.
"""
import csv
import enum
import io
import re
import select
import signal
import socket
import sys
import time
from dataclasses import dataclass
from datetime import datetime

import click
import psutil

HEADER = ['date', 'input in bytes per second', 'output in bytes per second']
TIMESTAMP_FORMAT = '%Y.%m.%d %H:%M:%S'
INTERVAL_RE = re.compile(r'[0-9]+')
# Largest select() timeout on platforms with a 32-bit timeval
MAX_INTERVAL = 2 ** 31 - 1
STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class IfStatError(click.ClickException):
    """Fatal error reported as '<operation>: <detail>'"""
    exit_code = 1

    def __init__(self, operation, detail):
        super().__init__(f"{operation}: {detail}")
        self.operation = operation


class NotFound(IfStatError):
    pass


class SystemQueryFailed(IfStatError):
    pass


class WriteFailed(IfStatError):
    pass


@dataclass(frozen=True)
class CounterSnapshot:
    inbound_bytes: int
    outbound_bytes: int
    sampled_at: float


@dataclass(frozen=True)
class RateSample:
    timestamp: float
    in_rate: int
    out_rate: int


class State(enum.Enum):
    STARTING = 'starting'
    RUNNING = 'running'
    DRAINING = 'draining'
    STOPPED = 'stopped'


def resolve_interface(name):
    """Return the index of the lowest-numbered interface called `name`"""
    try:
        interfaces = sorted(socket.if_nameindex())
    except OSError as e:
        raise SystemQueryFailed('resolve_interface', e.strerror or str(e)) from e

    for index, ifname in interfaces:
        if ifname == name:
            return index

    available = [ifname for _, ifname in interfaces]
    raise NotFound('resolve_interface',
                   f"Couldn't get interface '{name}'. Available: {available}")


def read_counters(handle):
    """Read cumulative in/out byte counters for the interface with index `handle`"""
    try:
        name = socket.if_indextoname(handle)
        counters = psutil.net_io_counters(pernic=True)
    except (OSError, psutil.Error) as e:
        raise SystemQueryFailed('read_counters', getattr(e, 'strerror', None) or str(e)) from e
    # Timestamp after the read so it never precedes the counter values
    sampled_at = time.time()

    if name not in counters:
        raise SystemQueryFailed('read_counters',
                                f"No counters for interface '{name}' (index {handle})")
    stats = counters[name]
    return CounterSnapshot(stats.bytes_recv, stats.bytes_sent, sampled_at)


def compute_rate(prev, curr):
    """
    Bytes per second between two snapshots of the same interface

    The first sample (no previous snapshot) and a non-positive interval both
    give zero rates. A counter that went backwards counts as no traffic.
    """
    if prev is None:
        return RateSample(curr.sampled_at, 0, 0)

    elapsed = curr.sampled_at - prev.sampled_at
    if elapsed <= 0:
        return RateSample(curr.sampled_at, 0, 0)

    in_delta = max(curr.inbound_bytes - prev.inbound_bytes, 0)
    out_delta = max(curr.outbound_bytes - prev.outbound_bytes, 0)
    return RateSample(curr.sampled_at, int(in_delta / elapsed), int(out_delta / elapsed))


def record_row(timestamp, in_rate, out_rate):
    date = datetime.fromtimestamp(timestamp).strftime(TIMESTAMP_FORMAT)
    return [date, int(in_rate), int(out_rate)]


def format_record(timestamp, in_rate, out_rate):
    """Build one CSV line, timestamp in local time"""
    line = io.StringIO()
    csv.writer(line, lineterminator='\n').writerow(record_row(timestamp, in_rate, out_rate))
    return line.getvalue()


def parse_record(line):
    """Inverse of format_record: returns (datetime, in_rate, out_rate)"""
    date, in_rate, out_rate = next(csv.reader([line]))
    return datetime.strptime(date, TIMESTAMP_FORMAT), int(in_rate), int(out_rate)


def write_header(csvfile):
    try:
        csv.writer(csvfile, lineterminator='\n').writerow(HEADER)
        csvfile.flush()
    except OSError as e:
        raise WriteFailed('write_header', e.strerror or str(e)) from e


def append_record(csvfile, timestamp, in_rate, out_rate):
    """Append one sample line and flush it to the OS"""
    try:
        csv.writer(csvfile, lineterminator='\n').writerow(record_row(timestamp, in_rate, out_rate))
        csvfile.flush()
    except OSError as e:
        raise WriteFailed('append_record', e.strerror or str(e)) from e


def drain(sock):
    """Discard pending wakeup bytes"""
    try:
        while sock.recv(64):
            pass
    except BlockingIOError:
        pass


class IfStatMonitor:
    def __init__(self, output_file, interval, interface):
        self.output_file = output_file
        self.interval = interval
        self.interface = interface
        self.state = State.STARTING
        self.stopping = False
        self.sample_count = 0

    def signal_handler(self, signum, frame):
        """Only flag the stop, the loop does the rest"""
        self.stopping = True

    def open_output(self):
        try:
            return open(self.output_file, 'w', encoding='ascii', newline='')
        except OSError as e:
            raise WriteFailed('open_output', f"{self.output_file}: {e.strerror or e}") from e

    def wait_interval(self, wakeup):
        """
        Sleep one full interval, returns True once a stop was requested

        Signals write a byte to the wakeup socket, so select() returns as soon
        as SIGINT/SIGTERM arrives, even if it landed just before the call.
        """
        deadline = time.monotonic() + self.interval
        while not self.stopping:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            readable, _, _ = select.select([wakeup], [], [], remaining)
            if readable:
                drain(wakeup)
        return self.stopping

    def sample_loop(self, handle, csvfile, wakeup):
        """Sample, compute, write, then wait a full interval until stopped"""
        previous = None
        while True:
            current = read_counters(handle)
            sample = compute_rate(previous, current)
            append_record(csvfile, sample.timestamp, sample.in_rate, sample.out_rate)
            previous = current
            self.sample_count += 1

            if self.stopping or self.wait_interval(wakeup):
                break

    def run(self):
        """Run until SIGINT/SIGTERM, returns the number of samples written"""
        handle = resolve_interface(self.interface)

        wakeup, wakeup_send = socket.socketpair()
        wakeup.setblocking(False)
        wakeup_send.setblocking(False)
        previous_fd = signal.set_wakeup_fd(wakeup_send.fileno(), warn_on_full_buffer=False)
        previous_handlers = {signum: signal.signal(signum, self.signal_handler)
                             for signum in STOP_SIGNALS}
        try:
            csvfile = self.open_output()
            try:
                write_header(csvfile)
                print(f"Monitoring {self.interface} (index {handle}) every {self.interval}s "
                      f"-> {self.output_file}")

                self.state = State.RUNNING
                self.sample_loop(handle, csvfile, wakeup)
            finally:
                self.state = State.DRAINING
                csvfile.close()
        finally:
            for signum, handler in previous_handlers.items():
                if handler is not None:
                    signal.signal(signum, handler)
            signal.set_wakeup_fd(previous_fd)
            wakeup.close()
            wakeup_send.close()

        self.state = State.STOPPED
        print(f"Stopped: {self.sample_count} samples saved to {self.output_file}")
        return self.sample_count


def validate_interval(ctx, param, value):
    if not INTERVAL_RE.fullmatch(value) or int(value) > MAX_INTERVAL:
        raise click.BadParameter(f'must be a whole number of seconds up to {MAX_INTERVAL}',
                                 ctx=ctx, param=param)
    return int(value)


@click.command()
@click.argument('outfile', type=click.Path(dir_okay=False))
@click.argument('interval', callback=validate_interval)
@click.argument('interface')
def cli(outfile, interval, interface):
    """
    Record the throughput of a network interface to a CSV file

    \b
      OUTFILE    File to write data to (overwritten).
      INTERVAL   Interval of data retrieval in whole seconds.
      INTERFACE  Network interface to retrieve data from.

    Runs until interrupted with SIGINT or SIGTERM.

    Examples:
        ifstat em0.csv 1 em0
    """
    IfStatMonitor(outfile, interval, interface).run()


def main(argv=None):
    """Entry point, every error exits with status 1"""
    try:
        cli.main(args=argv, prog_name='ifstat', standalone_mode=False)
    except click.UsageError as e:
        e.show()
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        sys.exit(1)


if __name__ == "__main__":
    main()
