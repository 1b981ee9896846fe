import argparse
import asyncio

from .limiter import RateLimiter
from .types import RateLimitResult


def _line(n: int, result: RateLimitResult) -> str:
    if result.allowed:
        return f"Request {n}: allowed ({result.remaining} tokens remaining)"
    return f"Request {n}: rejected (retry after {result.retry_after}s)"


async def _run(a: argparse.Namespace) -> list[str]:
    out = [
        f"Config: {a.capacity} tokens capacity, "
        f"{a.refill_rate} token(s) every {a.refill_interval}ms",
    ]
    async with RateLimiter(
        capacity=a.capacity,
        refill_rate=a.refill_rate,
        refill_interval=a.refill_interval,
    ) as limiter:
        n = 0
        for _ in range(a.requests):
            n += 1
            out.append(_line(n, await limiter.consume(a.key)))
        if a.wait > 0:
            out.append(f"Waiting {a.wait}s for tokens to refill...")
            await asyncio.sleep(a.wait)
            for _ in range(a.after):
                n += 1
                out.append(_line(n, await limiter.consume(a.key)))
    return out


def parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Drive a token bucket and print each decision")
    ap.add_argument("--capacity", type=int, default=5)
    ap.add_argument("--refill-rate", type=float, default=1.0)
    ap.add_argument("--refill-interval", type=int, default=1000, help="milliseconds")
    ap.add_argument("--requests", type=int, default=7)
    ap.add_argument("--after", type=int, default=3, help="requests sent after waiting")
    ap.add_argument("--wait", type=float, default=3.0, help="seconds")
    ap.add_argument("--key", default="user-123")
    return ap


def main(argv=None):
    a = parser().parse_args(argv)
    for line in asyncio.run(_run(a)):
        print(line)


if __name__ == "__main__":
    main()
