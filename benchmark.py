import argparse
import asyncio
import os
import tempfile
import time

from game_event_store import CandidateEvent, sqlite_event_store


class CountingReducer:
    name = "count"
    state_version = 1

    def initial_state(self):
        return 0

    def apply(self, state, event):
        return state + 1

    def serialize(self, state) -> bytes:
        return str(state).encode()

    def deserialize(self, blob: bytes):
        return int(blob)


async def run_mode(db_path: str, num_events: int):
    reducer = CountingReducer()
    async with sqlite_event_store(db_path) as store:
        # --- Append benchmark ---
        # One batch per 100 events, so commit cost is amortized the way an
        # autosave would.
        start_append = time.perf_counter()
        sequence = 0
        for offset in range(0, num_events, 100):
            batch = [
                CandidateEvent(event_type="Bench", payload=f"data{i}".encode())
                for i in range(offset, min(offset + 100, num_events))
            ]
            sequence = await store.append_batch("bench_stream", sequence + 1, batch)
        append_time = time.perf_counter() - start_append

        # --- Read benchmark ---
        start_read = time.perf_counter()
        count = 0
        async for _ in store.read_range("bench_stream"):
            count += 1
        read_time = time.perf_counter() - start_read
        assert count == num_events

        # --- Rebuild benchmark: full replay, then from a snapshot at the head ---
        start_rebuild = time.perf_counter()
        assert await store.rebuild("bench_stream", reducer) == num_events
        full_rebuild_time = time.perf_counter() - start_rebuild

        await store.snapshot_now("bench_stream", reducer)
        start_rebuild = time.perf_counter()
        assert await store.rebuild("bench_stream", reducer) == num_events
        snapshot_rebuild_time = time.perf_counter() - start_rebuild

    return append_time, read_time, full_rebuild_time, snapshot_rebuild_time


def throughput(num_events: int, seconds: float) -> float:
    return num_events / seconds if seconds > 0 else 0


async def benchmark(num_events: int):
    print(f"Benchmarking with {num_events} events...")

    mem = await run_mode(":memory:", num_events)
    with tempfile.TemporaryDirectory() as tmpdir:
        file = await run_mode(os.path.join(tmpdir, "bench.db"), num_events)

    print(f"\n--- Results for {num_events} events ---")
    for label, (append_time, read_time, full_time, snap_time) in (
        ("In-memory SQLite ", mem),
        ("File-based SQLite", file),
    ):
        print(
            f"{label} - Append: {append_time:.4f}s ({throughput(num_events, append_time):,.0f} events/s), "
            f"Read: {read_time:.4f}s ({throughput(num_events, read_time):,.0f} events/s), "
            f"Rebuild: {full_time:.4f}s full / {snap_time:.4f}s from snapshot"
        )


async def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--num-events", type=int, default=1000)
    args = parser.parse_args()
    await benchmark(args.num_events)


if __name__ == "__main__":
    asyncio.run(main())
